"""Password-based authentication for Palette.

Hashes and verifies passwords with bcrypt, enforces the configured password
policy, and runs email/password login.
"""

from datetime import UTC, datetime

import bcrypt
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from ..core.config import get_settings_instance
from ..core.exceptions import InvalidCredentialsError, NotFoundError, ValidationError
from ..core.logging import get_logger, redact_email
from .models import Account

logger = get_logger(__name__)


def normalize_email(email: str | None) -> str | None:
    """Trim and lower-case an email address; blank becomes None."""
    if email is None:
        return None
    email = email.strip().lower()
    return email or None


class PasswordAuthService:
    """Service for password-based account authentication."""

    SPECIAL_CHARS: str = "!@#$%^&*()-_+="

    def __init__(self) -> None:
        self.settings = get_settings_instance()
        # Verified against when the account is missing so login timing does not
        # reveal which emails are registered
        self._dummy_hash = bcrypt.hashpw(b"palette-dummy-password", bcrypt.gensalt()).decode("utf-8")

    def hash_password(self, password: str) -> str:
        """Hash a password using bcrypt."""
        return bcrypt.hashpw(password.encode("utf-8"), bcrypt.gensalt()).decode("utf-8")

    def verify_password(self, password: str, password_hash: str) -> bool:
        """Verify a password against its hash."""
        try:
            return bcrypt.checkpw(password.encode("utf-8"), password_hash.encode("utf-8"))
        except ValueError:
            # Malformed stored hash
            return False

    def validate_password(self, password: str) -> list[str]:
        """Validate a password against the configured password policy.

        - ``moderate``: minimum length, at least one uppercase letter, one
          lowercase letter and one digit.
        - ``strict``: all ``moderate`` rules plus one special character.

        Returns:
            Human-readable messages for each violated rule; empty when valid.

        """
        errors: list[str] = []

        min_len = self.settings.password_min_length
        if len(password) < min_len:
            errors.append(f"Password must be at least {min_len} characters long")
        if not any(c.isupper() for c in password):
            errors.append("Password must contain at least one uppercase letter")
        if not any(c.islower() for c in password):
            errors.append("Password must contain at least one lowercase letter")
        if not any(c.isdigit() for c in password):
            errors.append("Password must contain at least one digit")

        if self.settings.password_policy == "strict" and not any(  # noqa: S105
            c in self.SPECIAL_CHARS for c in password
        ):
            errors.append(f"Password must contain at least one special character ({self.SPECIAL_CHARS})")

        return errors

    def hash_validated_password(self, password: str) -> str:
        """Validate against the policy, then hash.

        Raises:
            ValidationError: listing every violated rule.

        """
        errors = self.validate_password(password)
        if errors:
            raise ValidationError("; ".join(errors), details={"password": errors})
        return self.hash_password(password)

    async def authenticate(self, email: str, password: str, db: AsyncSession) -> Account:
        """Authenticate an account with email and password.

        Always performs one bcrypt verification, against a dummy hash when
        the account is missing or has no password.
        """
        normalized = normalize_email(email)
        account = None
        if normalized:
            result = await db.execute(select(Account).where(Account.email == normalized))
            account = result.scalar_one_or_none()

        password_hash = account.password_hash if account and account.password_hash else self._dummy_hash
        password_valid = self.verify_password(password, password_hash)

        if account is None or not account.password_hash or not password_valid:
            logger.info("Password login rejected", extra={"email": redact_email(normalized)})
            raise InvalidCredentialsError()

        account.last_login = datetime.now(UTC)
        await db.commit()

        logger.info("Password login succeeded", extra={"account_id": account.id})
        return account

    async def change_password(
        self,
        account_id: str,
        current_password: str | None,
        new_password: str,
        db: AsyncSession,
    ) -> Account:
        """Change a password, or set a first one on a social-only account."""
        account = await db.get(Account, account_id)
        if account is None:
            raise NotFoundError("Account not found", details={"account_id": account_id})

        if account.password_hash:
            if not current_password or not self.verify_password(current_password, account.password_hash):
                raise ValidationError("Current password is incorrect")
            if self.verify_password(new_password, account.password_hash):
                raise ValidationError("New password must be different from current password")

        had_password = account.password_hash is not None
        account.password_hash = self.hash_validated_password(new_password)
        await db.commit()

        logger.info(
            "Password changed" if had_password else "Password set on social account",
            extra={"account_id": account.id},
        )
        return account


_password_auth_service: PasswordAuthService | None = None


def get_password_auth_service() -> PasswordAuthService:
    """Get the process-wide password service."""
    global _password_auth_service  # noqa: PLW0603
    if _password_auth_service is None:
        _password_auth_service = PasswordAuthService()
    return _password_auth_service
