"""Value types shared by the profile fetchers, the identity resolver and the API."""

from dataclasses import dataclass, field, replace
from enum import Enum
from typing import TYPE_CHECKING, Any, Union

if TYPE_CHECKING:
    from ..auth.models import Account


class Intent(str, Enum):
    """What the caller wants a social identity to do."""

    LOGIN = "login"
    SIGNUP = "signup"
    LINK = "link"


class ConflictReason(str, Enum):
    """Stable reason codes for requests that cannot proceed as declared."""

    ACCOUNT_NOT_FOUND = "ACCOUNT_NOT_FOUND"
    ACCOUNT_NOT_FOUND_NO_EMAIL = "ACCOUNT_NOT_FOUND_NO_EMAIL"
    EMAIL_ALREADY_EXISTS = "EMAIL_ALREADY_EXISTS"
    EMAIL_ACCOUNT_EXISTS_NEEDS_MANUAL_LINK = "EMAIL_ACCOUNT_EXISTS_NEEDS_MANUAL_LINK"
    SOCIAL_ALREADY_LINKED_ELSEWHERE = "SOCIAL_ALREADY_LINKED_ELSEWHERE"
    PROVIDER_ALREADY_LINKED = "PROVIDER_ALREADY_LINKED"


CONFLICT_MESSAGES: dict[ConflictReason, str] = {
    ConflictReason.ACCOUNT_NOT_FOUND: "No account is registered for this social identity",
    ConflictReason.ACCOUNT_NOT_FOUND_NO_EMAIL: (
        "No account is registered for this social identity and the provider shared no email"
    ),
    ConflictReason.EMAIL_ALREADY_EXISTS: "An account with this email already exists",
    ConflictReason.EMAIL_ACCOUNT_EXISTS_NEEDS_MANUAL_LINK: (
        "An account with this email exists; sign in to it and link this provider from settings"
    ),
    ConflictReason.SOCIAL_ALREADY_LINKED_ELSEWHERE: "This social identity is already linked to another account",
    ConflictReason.PROVIDER_ALREADY_LINKED: "This account is already linked to a different identity at this provider",
}


@dataclass(frozen=True)
class IdentityAssertion:
    """A provider-verified claim about who the caller is. Never persisted."""

    provider: str
    external_id: str
    email: str | None = None
    display_name: str | None = None
    avatar_url: str | None = None
    email_verified_by_provider: bool | None = None

    def normalized(self) -> "IdentityAssertion":
        """Copy with a trimmed, lower-cased email (blank becomes None)."""
        email = (self.email or "").strip().lower() or None
        return replace(self, email=email)

    def public_fields(self) -> dict[str, Any]:
        """Non-secret fields safe to hand back to the caller."""
        return {
            "provider": self.provider,
            "externalId": self.external_id,
            "email": self.email,
            "displayName": self.display_name,
            "avatarUrl": self.avatar_url,
        }


@dataclass(frozen=True)
class PendingLinkProfile:
    """A provider profile without an email, waiting for one from the user."""

    provider: str
    external_id: str
    display_name: str | None = None
    avatar_url: str | None = None

    @classmethod
    def from_assertion(cls, assertion: IdentityAssertion) -> "PendingLinkProfile":
        return cls(
            provider=assertion.provider,
            external_id=assertion.external_id,
            display_name=assertion.display_name,
            avatar_url=assertion.avatar_url,
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "provider": self.provider,
            "externalId": self.external_id,
            "displayName": self.display_name,
            "avatarUrl": self.avatar_url,
        }


# Resolution outcomes


@dataclass
class Authenticated:
    account: "Account"
    is_new_account: bool


@dataclass
class NeedsEmail:
    pending_profile: PendingLinkProfile


@dataclass
class Conflict:
    reason: ConflictReason
    details: dict[str, Any] = field(default_factory=dict)
    pending_profile: PendingLinkProfile | None = None

    @property
    def message(self) -> str:
        return CONFLICT_MESSAGES[self.reason]


ResolutionOutcome = Union[Authenticated, NeedsEmail, Conflict]


# Decisions produced by decide_resolution and carried out by IdentityResolver


@dataclass(frozen=True)
class UseExisting:
    """The identity is already bound to ``account``; sign in as it."""

    account: "Account"


@dataclass(frozen=True)
class CreateAccount:
    """Create a new account bound to the asserted identity."""


@dataclass(frozen=True)
class AttachBinding:
    """Bind the asserted identity to ``account``."""

    account: "Account"


@dataclass(frozen=True)
class AskForEmail:
    pending_profile: PendingLinkProfile


@dataclass(frozen=True)
class Reject:
    reason: ConflictReason
    pending_profile: PendingLinkProfile | None = None


Decision = Union[UseExisting, CreateAccount, AttachBinding, AskForEmail, Reject]
