"""Bearer-token authentication dependencies for the Palette API"""

from fastapi import Depends
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.ext.asyncio import AsyncSession

from ..core.config import get_settings_instance
from ..core.database import get_db
from ..core.exceptions import (
    AuthorizationError,
    EmailNotVerifiedError,
    TokenInvalidError,
    TokenMissingError,
)
from ..core.logging import get_logger
from .jwt_manager import get_token_issuer
from .models import Account, AccountRole

logger = get_logger(__name__)

# auto_error is off so a missing header surfaces as TOKEN_MISSING, not a bare 403
security = HTTPBearer(auto_error=False)


class RBACController:
    """Resolves the calling account from its access token"""

    async def _load_account(
        self,
        credentials: HTTPAuthorizationCredentials | None,
        db: AsyncSession,
    ) -> Account:
        if credentials is None or not credentials.credentials:
            raise TokenMissingError()

        claims = get_token_issuer().verify_access_token(credentials.credentials)
        account = await db.get(Account, claims.account_id)
        if account is None:
            logger.info("Access token for missing account", extra={"account_id": claims.account_id})
            raise TokenInvalidError("Account no longer exists")
        return account

    async def get_current_account(
        self,
        credentials: HTTPAuthorizationCredentials | None = Depends(security),
        db: AsyncSession = Depends(get_db),
    ) -> Account:
        """Current account; rejects unverified emails when verification is required"""
        account = await self._load_account(credentials, db)
        if get_settings_instance().require_email_verification and not account.email_verified:
            raise EmailNotVerifiedError(account.email)
        return account

    async def get_current_account_allow_unverified(
        self,
        credentials: HTTPAuthorizationCredentials | None = Depends(security),
        db: AsyncSession = Depends(get_db),
    ) -> Account:
        """Current account, verified or not (used by /auth/me)"""
        return await self._load_account(credentials, db)

    def require_role(self, required_role: AccountRole):
        """Dependency factory requiring a specific role"""

        async def role_checker(
            credentials: HTTPAuthorizationCredentials | None = Depends(security),
            db: AsyncSession = Depends(get_db),
        ) -> Account:
            current_account = await self.get_current_account(credentials, db)
            if current_account.role_enum != required_role and not current_account.is_admin:
                raise AuthorizationError(f"Insufficient permissions. Required: {required_role.value}")
            return current_account

        return role_checker


rbac = RBACController()

get_current_account = rbac.get_current_account
get_current_account_allow_unverified = rbac.get_current_account_allow_unverified
require_admin = rbac.require_role(AccountRole.ADMIN)
