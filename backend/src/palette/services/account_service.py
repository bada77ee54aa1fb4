"""
Account Service Module

Business logic for the account lifecycle outside of social identity
resolution:

- Password signup and email verification
- Nickname allocation shared with social signup
- Profile updates
- Unbinding a provider (never the last sign-in method)
- Account deletion (bindings detached first)

Usage:
    from palette.services.account_service import AccountService, get_account_service

    async def endpoint(
        account_service: AccountService = Depends(get_account_service),
        db: AsyncSession = Depends(get_db),
    ):
        result = await account_service.register(email, password, nickname, db)
"""

import hashlib
import secrets
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta

from sqlalchemy import delete, func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from ..auth.models import Account, AccountRole
from ..auth.password_auth import PasswordAuthService, get_password_auth_service, normalize_email
from ..core.config import Settings, get_settings_instance
from ..core.exceptions import (
    AuthorizationError,
    EmailAlreadyExistsError,
    LastAuthMethodError,
    NotFoundError,
    ValidationError,
    VerificationTokenInvalidError,
)
from ..core.logging import get_logger, redact_email
from ..models.base import ensure_utc
from ..models.refresh_token import ConsumedRefreshToken

logger = get_logger(__name__)

NICKNAME_MIN_LENGTH = 2
NICKNAME_MAX_LENGTH = 30
NICKNAME_FALLBACK = "User"
_NICKNAME_MAX_ATTEMPTS = 100


def hash_verification_token(raw_token: str) -> str:
    return hashlib.sha256(raw_token.encode("utf-8")).hexdigest()


class EmailSender:
    """Outbound email collaborator. The default only logs the redacted destination."""

    async def send_verification(self, email: str, verification_url: str) -> None:
        logger.info("Verification email queued", extra={"email": redact_email(email)})


@dataclass
class RegistrationResult:
    account: Account
    verification_required: bool


class AccountService:
    """Service for account lifecycle operations"""

    def __init__(
        self,
        settings: Settings | None = None,
        password_service: PasswordAuthService | None = None,
        email_sender: EmailSender | None = None,
    ):
        self.settings = settings or get_settings_instance()
        self.password_service = password_service or get_password_auth_service()
        self.email_sender = email_sender or EmailSender()

    async def get_account(self, account_id: str, db: AsyncSession) -> Account:
        account = await db.get(Account, account_id)
        if account is None:
            raise NotFoundError("Account not found", details={"account_id": account_id})
        return account

    async def get_account_by_email(self, email: str | None, db: AsyncSession) -> Account | None:
        normalized = normalize_email(email)
        if not normalized:
            return None
        result = await db.execute(
            select(Account).where(Account.email == normalized).execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    def role_for_email(self, email: str | None) -> AccountRole:
        """Accounts created with a configured admin email get the admin role."""
        if email and email.lower() in [admin.lower() for admin in self.settings.admin_emails]:
            return AccountRole.ADMIN
        return AccountRole.USER

    async def _nickname_taken(self, nickname: str, db: AsyncSession, exclude_id: str | None = None) -> bool:
        stmt = select(Account.id).where(func.lower(Account.nickname) == nickname.lower())
        if exclude_id is not None:
            stmt = stmt.where(Account.id != exclude_id)
        result = await db.execute(stmt.limit(1))
        return result.scalar_one_or_none() is not None

    async def allocate_nickname(
        self,
        db: AsyncSession,
        display_name: str | None = None,
        email: str | None = None,
    ) -> str:
        """Pick a case-insensitively unique nickname.

        Base is the display name, else the email local part, else "User".
        Collisions get a numeric suffix (name1, name2, ...) and the result is
        always between 2 and 30 characters.
        """
        base = (display_name or "").strip()
        if not base and email:
            base = email.split("@", 1)[0].strip()
        if len(base) < NICKNAME_MIN_LENGTH:
            base = NICKNAME_FALLBACK
        base = base[:NICKNAME_MAX_LENGTH]

        candidate = base
        counter = 1
        while await self._nickname_taken(candidate, db):
            if counter > _NICKNAME_MAX_ATTEMPTS:
                suffix = secrets.token_hex(3)
            else:
                suffix = str(counter)
            candidate = base[: NICKNAME_MAX_LENGTH - len(suffix)] + suffix
            counter += 1
        return candidate

    def _validate_email(self, email: str | None) -> str:
        normalized = normalize_email(email)
        if not normalized or "@" not in normalized or normalized.startswith("@") or normalized.endswith("@"):
            raise ValidationError("A valid email address is required", details={"field": "email"})
        return normalized

    def issue_verification_token(self, account: Account) -> str:
        """Store the digest of a fresh token on the account and return the raw token."""
        raw_token = secrets.token_hex(32)
        account.email_verification_token_hash = hash_verification_token(raw_token)
        account.email_verification_expires_at = datetime.now(UTC) + timedelta(
            hours=self.settings.email_verification_ttl_hours
        )
        return raw_token

    def _verification_url(self, raw_token: str) -> str:
        return f"{self.settings.client_url.rstrip('/')}/verify-email?token={raw_token}"

    async def send_verification_email(self, email: str, raw_token: str) -> None:
        await self.email_sender.send_verification(email, self._verification_url(raw_token))

    async def register(
        self,
        email: str,
        password: str,
        nickname: str | None,
        db: AsyncSession,
    ) -> RegistrationResult:
        """Create a password account."""
        normalized = self._validate_email(email)
        password_hash = self.password_service.hash_validated_password(password)

        if await self.get_account_by_email(normalized, db) is not None:
            raise EmailAlreadyExistsError(details={"email": normalized})

        verification_required = self.settings.require_email_verification
        account = Account(
            email=normalized,
            password_hash=password_hash,
            nickname=await self.allocate_nickname(db, nickname, normalized),
            role=self.role_for_email(normalized).value,
            email_verified=not verification_required,
            last_login=None if verification_required else datetime.now(UTC),
        )
        raw_token = self.issue_verification_token(account) if verification_required else None

        db.add(account)
        try:
            await db.commit()
        except IntegrityError as e:
            await db.rollback()
            if await self.get_account_by_email(normalized, db) is not None:
                raise EmailAlreadyExistsError(details={"email": normalized}) from e
            raise

        logger.info(
            "Password account created",
            extra={
                "account_id": account.id,
                "email": redact_email(normalized),
                "verification_required": verification_required,
            },
        )
        if raw_token is not None:
            await self.send_verification_email(normalized, raw_token)
        return RegistrationResult(account=account, verification_required=verification_required)

    async def verify_email(self, raw_token: str, db: AsyncSession) -> Account:
        """Mark the account owning ``raw_token`` verified."""
        if not raw_token:
            raise VerificationTokenInvalidError()
        result = await db.execute(
            select(Account).where(Account.email_verification_token_hash == hash_verification_token(raw_token))
        )
        account = result.scalar_one_or_none()
        if account is None:
            raise VerificationTokenInvalidError()

        expires_at = ensure_utc(account.email_verification_expires_at)
        if expires_at is None or expires_at < datetime.now(UTC):
            logger.info("Expired verification token presented", extra={"account_id": account.id})
            raise VerificationTokenInvalidError()

        account.email_verified = True
        account.email_verification_token_hash = None
        account.email_verification_expires_at = None
        account.last_login = datetime.now(UTC)
        await db.commit()

        logger.info("Email verified", extra={"account_id": account.id})
        return account

    async def resend_verification(self, email: str, db: AsyncSession) -> None:
        """Re-issue a verification token. Answers the same whether or not the email is known."""
        account = await self.get_account_by_email(email, db)
        if account is None or account.email_verified:
            logger.info("Verification resend skipped", extra={"email": redact_email(normalize_email(email))})
            return

        raw_token = self.issue_verification_token(account)
        await db.commit()
        await self.send_verification_email(account.email, raw_token)

    async def update_profile(
        self,
        account: Account,
        db: AsyncSession,
        nickname: str | None = None,
        avatar_url: str | None = None,
    ) -> Account:
        if nickname is not None:
            nickname = nickname.strip()
            if not NICKNAME_MIN_LENGTH <= len(nickname) <= NICKNAME_MAX_LENGTH:
                raise ValidationError(
                    f"Nickname must be between {NICKNAME_MIN_LENGTH} and {NICKNAME_MAX_LENGTH} characters",
                    details={"field": "nickname"},
                )
            if await self._nickname_taken(nickname, db, exclude_id=account.id):
                raise ValidationError("Nickname is already taken", details={"field": "nickname"})
            account.nickname = nickname
        if avatar_url is not None:
            account.avatar_url = avatar_url or None
        await db.commit()
        return account

    async def unlink_provider(self, account: Account, provider: str, db: AsyncSession) -> Account:
        """Remove the account's binding at ``provider``."""
        binding = account.binding_for(provider)
        if binding is None:
            raise NotFoundError(f"No {provider} account is linked", details={"provider": provider})
        if account.auth_method_count() <= 1:
            raise LastAuthMethodError(provider)

        account.bindings.remove(binding)
        await db.commit()

        logger.info("Social binding removed", extra={"account_id": account.id, "provider": provider})
        return account

    async def delete_account(self, account_id: str, actor: Account, db: AsyncSession) -> None:
        """Delete an account; only the owner or an admin may do so."""
        if actor.id != account_id and not actor.is_admin:
            raise AuthorizationError("Only the account owner or an admin can delete this account")

        account = await self.get_account(account_id, db)

        # Detach provider identities before the account row goes
        binding_count = len(account.bindings)
        account.bindings.clear()
        await db.flush()

        await db.execute(delete(ConsumedRefreshToken).where(ConsumedRefreshToken.account_id == account_id))
        await db.delete(account)
        await db.commit()

        logger.info(
            "Account deleted",
            extra={
                "account_id": account_id,
                "deleted_by": actor.id,
                "bindings_detached": binding_count,
                "email": redact_email(account.email),
            },
        )


def get_account_service() -> AccountService:
    """Dependency provider for AccountService."""
    return AccountService()
