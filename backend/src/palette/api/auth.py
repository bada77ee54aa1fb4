"""Authentication API endpoints for Palette"""

from typing import Any

from fastapi import APIRouter, Depends, Response, status
from fastapi.security import HTTPAuthorizationCredentials
from sqlalchemy.ext.asyncio import AsyncSession

from ..auth.jwt_manager import TokenIssuer, get_token_issuer
from ..auth.models import Account
from ..auth.password_auth import PasswordAuthService, get_password_auth_service
from ..auth.rbac import get_current_account, get_current_account_allow_unverified, rbac, security
from ..core.database import get_db
from ..core.exceptions import IdentityConflictError
from ..core.logging import get_logger
from ..providers.registry import get_profile_fetcher, normalize_provider
from ..schemas.auth import (
    ChangePasswordRequest,
    CompleteSignupRequest,
    LogoutRequest,
    PasswordLoginRequest,
    RefreshTokenRequest,
    RegisterRequest,
    ResendVerificationRequest,
    SocialAuthRequest,
    VerifyEmailRequest,
)
from ..schemas.envelope import SuccessResponse
from ..services.account_service import AccountService, get_account_service
from ..services.identity_resolver import IdentityResolver
from ..services.identity_types import Authenticated, Conflict, Intent, NeedsEmail, ResolutionOutcome

logger = get_logger(__name__)

router = APIRouter(prefix="/auth", tags=["authentication"])


def create_token_response(
    account: Account,
    token_issuer: TokenIssuer,
    is_new_account: bool | None = None,
) -> dict[str, Any]:
    """Mint a token pair for ``account`` and shape the response body."""
    data = token_issuer.issue(account).to_dict()
    data["user"] = account.to_dict()
    if is_new_account is not None:
        data["isNewAccount"] = is_new_account
    return data


def _outcome_response(
    outcome: ResolutionOutcome,
    response: Response,
    token_issuer: TokenIssuer,
) -> SuccessResponse[dict[str, Any]]:
    """Turn a resolver outcome into the HTTP answer."""
    if isinstance(outcome, Authenticated):
        response.status_code = status.HTTP_201_CREATED if outcome.is_new_account else status.HTTP_200_OK
        return SuccessResponse(data=create_token_response(outcome.account, token_issuer, outcome.is_new_account))
    if isinstance(outcome, NeedsEmail):
        response.status_code = status.HTTP_202_ACCEPTED
        return SuccessResponse(data={"needsEmail": True, "pendingProfile": outcome.pending_profile.to_dict()})
    if isinstance(outcome, Conflict):
        details = dict(outcome.details)
        if outcome.pending_profile is not None:
            details["pendingProfile"] = outcome.pending_profile.to_dict()
        raise IdentityConflictError(outcome.reason.value, outcome.message, details)
    raise TypeError(f"Unexpected resolution outcome: {outcome!r}")


@router.post("/register", response_model=SuccessResponse[dict[str, Any]], status_code=status.HTTP_201_CREATED)
async def register(
    request: RegisterRequest,
    db: AsyncSession = Depends(get_db),
    account_service: AccountService = Depends(get_account_service),
    token_issuer: TokenIssuer = Depends(get_token_issuer),
):
    """Create a password account."""
    result = await account_service.register(request.email, request.password, request.nickname, db)
    if result.verification_required:
        return SuccessResponse(data={"requiresVerification": True, "email": result.account.email})
    return SuccessResponse(data=create_token_response(result.account, token_issuer, is_new_account=True))


@router.post("/login", response_model=SuccessResponse[dict[str, Any]])
async def login(
    request: PasswordLoginRequest,
    db: AsyncSession = Depends(get_db),
    password_service: PasswordAuthService = Depends(get_password_auth_service),
    token_issuer: TokenIssuer = Depends(get_token_issuer),
):
    """Email/password login. ``rememberMe`` only tells the client which storage slot to use."""
    account = await password_service.authenticate(request.email, request.password, db)
    data = create_token_response(account, token_issuer)
    data["rememberMe"] = request.remember_me
    return SuccessResponse(data=data)


@router.post("/refresh", response_model=SuccessResponse[dict[str, Any]])
async def refresh_token(
    request: RefreshTokenRequest,
    db: AsyncSession = Depends(get_db),
    token_issuer: TokenIssuer = Depends(get_token_issuer),
):
    """Exchange a refresh token for a new pair; the presented token is spent."""
    pair, account = await token_issuer.refresh(request.refresh_token, db)
    data = pair.to_dict()
    data["user"] = account.to_dict()
    return SuccessResponse(data=data)


@router.post("/logout", response_model=SuccessResponse[dict[str, Any]])
async def logout(
    request: LogoutRequest,
    db: AsyncSession = Depends(get_db),
    token_issuer: TokenIssuer = Depends(get_token_issuer),
):
    """Spend the caller's refresh token. Access tokens stay valid until they expire."""
    revoked = False
    if request.refresh_token:
        revoked = await token_issuer.revoke(request.refresh_token, db)
    return SuccessResponse(data={"loggedOut": True, "refreshTokenRevoked": revoked})


@router.post("/verify-email", response_model=SuccessResponse[dict[str, Any]])
async def verify_email(
    request: VerifyEmailRequest,
    db: AsyncSession = Depends(get_db),
    account_service: AccountService = Depends(get_account_service),
    token_issuer: TokenIssuer = Depends(get_token_issuer),
):
    account = await account_service.verify_email(request.token, db)
    return SuccessResponse(data=create_token_response(account, token_issuer))


@router.post("/resend-verification", response_model=SuccessResponse[dict[str, Any]])
async def resend_verification(
    request: ResendVerificationRequest,
    db: AsyncSession = Depends(get_db),
    account_service: AccountService = Depends(get_account_service),
):
    await account_service.resend_verification(request.email, db)
    return SuccessResponse(data={"message": "If the account exists and is unverified, a new link has been sent"})


@router.get("/me", response_model=SuccessResponse[dict[str, Any]])
async def get_me(current_account: Account = Depends(get_current_account_allow_unverified)):
    """Current account, including unverified ones so the client can show verification state."""
    return SuccessResponse(data=current_account.to_dict())


@router.put("/change-password", response_model=SuccessResponse[dict[str, Any]])
async def change_password(
    request: ChangePasswordRequest,
    current_account: Account = Depends(get_current_account),
    db: AsyncSession = Depends(get_db),
    password_service: PasswordAuthService = Depends(get_password_auth_service),
):
    await password_service.change_password(current_account.id, request.current_password, request.new_password, db)
    return SuccessResponse(data={"message": "Password changed successfully"})


@router.post("/{provider}/complete-signup", response_model=SuccessResponse[dict[str, Any]])
async def complete_signup(
    provider: str,
    request: CompleteSignupRequest,
    response: Response,
    db: AsyncSession = Depends(get_db),
    account_service: AccountService = Depends(get_account_service),
    token_issuer: TokenIssuer = Depends(get_token_issuer),
):
    """Finish a social signup with an email collected from the user."""
    resolver = IdentityResolver(db, account_service)
    outcome = await resolver.complete_signup(
        normalize_provider(provider),
        request.external_id,
        request.email,
        display_name=request.display_name,
        avatar_url=request.avatar_url,
    )
    return _outcome_response(outcome, response, token_issuer)


@router.post("/{provider}", response_model=SuccessResponse[dict[str, Any]])
async def social_auth(
    provider: str,
    request: SocialAuthRequest,
    response: Response,
    credentials: HTTPAuthorizationCredentials | None = Depends(security),
    db: AsyncSession = Depends(get_db),
    account_service: AccountService = Depends(get_account_service),
    token_issuer: TokenIssuer = Depends(get_token_issuer),
):
    """Log in, sign up or link with a provider token."""
    fetcher = get_profile_fetcher(provider)

    # Only linking needs to know who is calling; a stale bearer must not break login
    current_account = None
    if request.intent is Intent.LINK:
        current_account = await rbac.get_current_account(credentials, db)

    assertion = await fetcher.verify_and_fetch(request.token)
    resolver = IdentityResolver(db, account_service)
    outcome = await resolver.resolve(assertion, request.intent, current_account)
    return _outcome_response(outcome, response, token_issuer)
