"""Custom exceptions for the Palette identity service.

Every domain failure carries a stable machine-readable ``error_code`` that
the client and UI switch on, plus the HTTP status the API layer answers with.
"""

from typing import Any


class PaletteException(Exception):
    """Base exception class for Palette."""

    def __init__(
        self,
        message: str,
        error_code: str,
        status_code: int = 500,
        details: dict[str, Any] | None = None,
    ):
        self.message = message
        self.error_code = error_code
        self.status_code = status_code
        self.details = details or {}
        super().__init__(self.message)


# Database Exceptions
class DatabaseConnectionError(PaletteException):
    """Raised when there's a database connection error (network, auth, etc.)."""

    def __init__(self, reason: str, details: dict[str, Any] | None = None):
        super().__init__(
            message=f"Database connection error: {reason}",
            error_code="DATABASE_CONNECTION_ERROR",
            status_code=503,
            details=details or {"reason": reason},
        )


class DatabaseConstraintError(PaletteException):
    """Raised when a uniqueness or foreign key violation cannot be mapped to an outcome."""

    def __init__(self, reason: str, details: dict[str, Any] | None = None):
        super().__init__(
            message=f"Database constraint error: {reason}",
            error_code="DATABASE_CONSTRAINT_ERROR",
            status_code=409,
            details=details or {"reason": reason},
        )


class DatabaseSessionError(PaletteException):
    """Raised when there's an error with database session management."""

    def __init__(self, reason: str, details: dict[str, Any] | None = None):
        super().__init__(
            message=f"Database session error: {reason}",
            error_code="DATABASE_SESSION_ERROR",
            status_code=500,
            details=details or {"reason": reason},
        )


# Generic Exceptions
class NotFoundError(PaletteException):
    """Generic exception for when a resource is not found."""

    def __init__(self, message: str, details: dict[str, Any] | None = None):
        super().__init__(
            message=message,
            error_code="NOT_FOUND",
            status_code=404,
            details=details,
        )


class ValidationError(PaletteException):
    """Raised when input validation fails."""

    def __init__(self, message: str, details: dict[str, Any] | None = None):
        super().__init__(
            message=f"Validation error: {message}",
            error_code="VALIDATION_ERROR",
            status_code=400,
            details=details,
        )


class AuthorizationError(PaletteException):
    """Raised when the caller lacks the role an endpoint requires."""

    def __init__(self, message: str = "Authorization failed", details: dict[str, Any] | None = None):
        super().__init__(
            message=message,
            error_code="AUTHORIZATION_ERROR",
            status_code=403,
            details=details,
        )


# Identity resolution
# Resolver conflict reason codes and the status each one is answered with.
CONFLICT_STATUS_CODES: dict[str, int] = {
    "ACCOUNT_NOT_FOUND": 404,
    "ACCOUNT_NOT_FOUND_NO_EMAIL": 404,
    "EMAIL_ALREADY_EXISTS": 409,
    "EMAIL_ACCOUNT_EXISTS_NEEDS_MANUAL_LINK": 409,
    "SOCIAL_ALREADY_LINKED_ELSEWHERE": 409,
    "PROVIDER_ALREADY_LINKED": 409,
}


class IdentityConflictError(PaletteException):
    """Raised when an identity request cannot proceed as declared.

    ``details`` only ever holds the non-secret parts of the assertion
    (provider, external id, email, display name, avatar); never a raw token.
    """

    def __init__(self, reason_code: str, message: str, details: dict[str, Any] | None = None):
        super().__init__(
            message=message,
            error_code=reason_code,
            status_code=CONFLICT_STATUS_CODES.get(reason_code, 409),
            details=details,
        )


class EmailAlreadyExistsError(IdentityConflictError):
    """Raised when an email is already owned by another account."""

    def __init__(self, details: dict[str, Any] | None = None):
        super().__init__(
            reason_code="EMAIL_ALREADY_EXISTS",
            message="An account with this email already exists",
            details=details,
        )


class LastAuthMethodError(PaletteException):
    """Raised when removing a binding would leave the account with no way to sign in."""

    def __init__(self, provider: str):
        super().__init__(
            message=f"Cannot unlink '{provider}': it is the only sign-in method on this account",
            error_code="LAST_AUTH_METHOD",
            status_code=409,
            details={"provider": provider},
        )


# Provider Exceptions
class InvalidProviderTokenError(PaletteException):
    """Raised when a provider rejects the token presented by the caller."""

    def __init__(self, provider: str, reason: str = "Provider rejected the token"):
        super().__init__(
            message=f"Invalid {provider} token: {reason}",
            error_code="INVALID_PROVIDER_TOKEN",
            status_code=401,
            details={"provider": provider},
        )


class ProviderUnavailableError(PaletteException):
    """Raised when a provider times out or answers with a server error."""

    def __init__(self, provider: str, reason: str = "Provider did not respond"):
        super().__init__(
            message=f"Provider '{provider}' unavailable: {reason}",
            error_code="PROVIDER_UNAVAILABLE",
            status_code=503,
            details={"provider": provider},
        )


class UnsupportedProviderError(PaletteException):
    """Raised when no profile fetcher is registered for a provider name."""

    def __init__(self, provider: str):
        super().__init__(
            message=f"Unsupported provider: {provider}",
            error_code="UNSUPPORTED_PROVIDER",
            status_code=400,
            details={"provider": provider},
        )


# Authentication Exceptions
class AuthenticationError(PaletteException):
    """Raised when authentication fails."""

    def __init__(
        self,
        message: str = "Authentication failed",
        error_code: str = "AUTHENTICATION_ERROR",
        details: dict[str, Any] | None = None,
    ):
        super().__init__(
            message=message,
            error_code=error_code,
            status_code=401,
            details=details,
        )


class InvalidCredentialsError(AuthenticationError):
    """Raised when an email/password pair does not match."""

    def __init__(self) -> None:
        super().__init__("Invalid email or password", "INVALID_CREDENTIALS")


class TokenMissingError(AuthenticationError):
    """Raised when a protected endpoint is called without a bearer token."""

    def __init__(self) -> None:
        super().__init__("Authentication token is required", "TOKEN_MISSING")


class TokenExpiredError(AuthenticationError):
    """Raised when an access token is past its expiry."""

    def __init__(self) -> None:
        super().__init__("Access token has expired", "TOKEN_EXPIRED")


class TokenInvalidError(AuthenticationError):
    """Raised when an access token fails signature or structure checks."""

    def __init__(self, message: str = "Access token is invalid") -> None:
        super().__init__(message, "TOKEN_INVALID")


class EmailNotVerifiedError(AuthenticationError):
    """Raised when an unverified account calls an endpoint that needs a verified email."""

    def __init__(self, email: str | None = None) -> None:
        super().__init__(
            "Email verification is required",
            "EMAIL_NOT_VERIFIED",
            details={"email": email} if email else None,
        )


class RefreshInvalidError(AuthenticationError):
    """Raised when a refresh token is expired, malformed or already rotated away."""

    def __init__(self, message: str = "Refresh token is invalid or has already been used") -> None:
        super().__init__(message, "REFRESH_INVALID")


class VerificationTokenInvalidError(PaletteException):
    """Raised when an email verification token is unknown or expired."""

    def __init__(self) -> None:
        super().__init__(
            message="Verification token is invalid or has expired",
            error_code="VERIFICATION_TOKEN_INVALID",
            status_code=400,
        )
