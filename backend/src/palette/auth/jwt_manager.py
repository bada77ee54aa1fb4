"""Token issuance and rotation for Palette authentication.

Access tokens are self-contained HS256 JWTs verified without a store lookup.
Refresh tokens are JWTs too, but each carries a ``jti`` that is written to the
consumed-token ledger the moment it is exchanged, so a refresh token can be
used exactly once.
"""

import uuid
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from typing import Any

from jose import ExpiredSignatureError, JWTError, jwt
from sqlalchemy import delete
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from ..core.config import Settings, get_settings_instance
from ..core.exceptions import RefreshInvalidError, TokenExpiredError, TokenInvalidError
from ..core.logging import get_logger
from ..models.refresh_token import ConsumedRefreshToken
from .models import Account

logger = get_logger(__name__)

ACCESS_TOKEN_TYPE = "access"
REFRESH_TOKEN_TYPE = "refresh"


@dataclass(frozen=True)
class TokenPair:
    """Access and refresh token minted together; always stored and cleared together."""

    access_token: str
    refresh_token: str
    expires_in: int
    token_type: str = "bearer"

    def to_dict(self) -> dict[str, Any]:
        return {
            "accessToken": self.access_token,
            "refreshToken": self.refresh_token,
            "tokenType": self.token_type,
            "expiresIn": self.expires_in,
        }


@dataclass(frozen=True)
class AccessClaims:
    account_id: str
    role: str
    email_verified: bool
    expires_at: datetime
    jti: str


class TokenIssuer:
    """Mints, verifies and rotates token pairs."""

    def __init__(self, settings: Settings | None = None):
        settings = settings or get_settings_instance()
        self.secret_key = settings.jwt_secret_key
        self.algorithm = settings.jwt_algorithm
        self.access_token_expire_minutes = settings.jwt_access_token_expire_minutes
        self.refresh_token_expire_days = settings.jwt_refresh_token_expire_days

        if not self.secret_key:
            raise ValueError("JWT_SECRET_KEY not configured in settings")

    def _encode(self, payload: dict[str, Any]) -> str:
        return jwt.encode(payload, self.secret_key, algorithm=self.algorithm)

    def create_access_token(self, account: Account) -> str:
        """Create JWT access token carrying the account id, role and expiry"""
        now = datetime.now(UTC)
        payload = {
            "sub": account.id,
            "user_id": account.id,
            "role": account.role,
            "email_verified": bool(account.email_verified),
            "iat": now,
            "exp": now + timedelta(minutes=self.access_token_expire_minutes),
            "jti": uuid.uuid4().hex,
            "type": ACCESS_TOKEN_TYPE,
        }
        return self._encode(payload)

    def create_refresh_token(self, account_id: str) -> str:
        """Create single-use JWT refresh token"""
        now = datetime.now(UTC)
        payload = {
            "sub": account_id,
            "user_id": account_id,
            "iat": now,
            "exp": now + timedelta(days=self.refresh_token_expire_days),
            "jti": uuid.uuid4().hex,
            "type": REFRESH_TOKEN_TYPE,
        }
        return self._encode(payload)

    def issue(self, account: Account) -> TokenPair:
        """Mint a fresh token pair for ``account``."""
        return TokenPair(
            access_token=self.create_access_token(account),
            refresh_token=self.create_refresh_token(account.id),
            expires_in=self.access_token_expire_minutes * 60,
        )

    def verify_access_token(self, token: str) -> AccessClaims:
        """Verify signature, expiry and type of an access token."""
        try:
            payload = jwt.decode(token, self.secret_key, algorithms=[self.algorithm])
        except ExpiredSignatureError as e:
            raise TokenExpiredError() from e
        except JWTError as e:
            logger.debug(f"Access token verification failed: {e}")
            raise TokenInvalidError() from e

        if payload.get("type") != ACCESS_TOKEN_TYPE:
            raise TokenInvalidError("Token is not an access token")
        account_id = payload.get("sub") or payload.get("user_id")
        if not account_id:
            raise TokenInvalidError("Token carries no account id")

        return AccessClaims(
            account_id=account_id,
            role=payload.get("role", ""),
            email_verified=bool(payload.get("email_verified", False)),
            expires_at=datetime.fromtimestamp(payload["exp"], UTC),
            jti=payload.get("jti", ""),
        )

    def _decode_refresh_token(self, token: str) -> dict[str, Any]:
        try:
            payload = jwt.decode(token, self.secret_key, algorithms=[self.algorithm])
        except ExpiredSignatureError as e:
            raise RefreshInvalidError("Refresh token has expired") from e
        except JWTError as e:
            raise RefreshInvalidError() from e

        if payload.get("type") != REFRESH_TOKEN_TYPE:
            raise RefreshInvalidError("Token is not a refresh token")
        if not payload.get("jti") or not (payload.get("sub") or payload.get("user_id")):
            raise RefreshInvalidError("Refresh token is missing required claims")
        return payload

    async def refresh(self, old_refresh_token: str, db: AsyncSession) -> tuple[TokenPair, Account]:
        """Exchange a refresh token for a new pair, spending the old one.

        Raises:
            RefreshInvalidError: the token is expired, malformed, belongs to a
                deleted account, or was already exchanged (reuse).

        """
        payload = self._decode_refresh_token(old_refresh_token)
        jti = payload["jti"]
        account_id = payload.get("sub") or payload.get("user_id")

        if await db.get(ConsumedRefreshToken, jti) is not None:
            logger.warning(
                "Refresh token reuse rejected",
                extra={"account_id": account_id, "jti": jti},
            )
            raise RefreshInvalidError()

        account = await db.get(Account, account_id)
        if account is None:
            logger.warning("Refresh token for missing account", extra={"account_id": account_id})
            raise RefreshInvalidError()

        db.add(
            ConsumedRefreshToken(
                jti=jti,
                account_id=account_id,
                expires_at=datetime.fromtimestamp(payload["exp"], UTC),
            )
        )
        try:
            await db.commit()
        except IntegrityError as e:
            # A concurrent exchange of the same token won the insert
            await db.rollback()
            logger.warning(
                "Refresh token reuse rejected (concurrent rotation)",
                extra={"account_id": account_id, "jti": jti},
            )
            raise RefreshInvalidError() from e

        logger.debug("Refresh token rotated", extra={"account_id": account_id})
        return self.issue(account), account

    async def revoke(self, refresh_token: str, db: AsyncSession) -> bool:
        """Spend a refresh token without issuing a new pair (logout).

        Returns False when the token was already unusable.
        """
        try:
            payload = self._decode_refresh_token(refresh_token)
        except RefreshInvalidError:
            return False

        jti = payload["jti"]
        if await db.get(ConsumedRefreshToken, jti) is not None:
            return False
        db.add(
            ConsumedRefreshToken(
                jti=jti,
                account_id=payload.get("sub") or payload.get("user_id"),
                expires_at=datetime.fromtimestamp(payload["exp"], UTC),
            )
        )
        try:
            await db.commit()
        except IntegrityError:
            # Spent concurrently; the outcome is the same
            await db.rollback()
            return False
        return True

    async def purge_consumed_tokens(self, db: AsyncSession) -> int:
        """Delete ledger rows for tokens that have expired on their own."""
        result = await db.execute(
            delete(ConsumedRefreshToken).where(ConsumedRefreshToken.expires_at < datetime.now(UTC))
        )
        await db.commit()
        purged = result.rowcount or 0
        if purged:
            logger.info("Purged consumed refresh tokens", extra={"count": purged})
        return purged


_token_issuer: TokenIssuer | None = None


def get_token_issuer() -> TokenIssuer:
    """Get the process-wide token issuer."""
    global _token_issuer  # noqa: PLW0603
    if _token_issuer is None:
        _token_issuer = TokenIssuer()
    return _token_issuer
