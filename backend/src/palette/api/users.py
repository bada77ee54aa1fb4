"""Account self-service and admin endpoints for Palette"""

from typing import Any

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from ..auth.models import Account
from ..auth.rbac import get_current_account, require_admin
from ..core.database import get_db
from ..providers.registry import normalize_provider
from ..schemas.auth import UpdateProfileRequest
from ..schemas.envelope import SuccessResponse
from ..services.account_service import AccountService, get_account_service

router = APIRouter(prefix="/users", tags=["users"])


@router.get("/me", response_model=SuccessResponse[dict[str, Any]])
async def get_my_account(current_account: Account = Depends(get_current_account)):
    return SuccessResponse(data=current_account.to_dict())


@router.put("/me", response_model=SuccessResponse[dict[str, Any]])
async def update_my_account(
    request: UpdateProfileRequest,
    current_account: Account = Depends(get_current_account),
    db: AsyncSession = Depends(get_db),
    account_service: AccountService = Depends(get_account_service),
):
    account = await account_service.update_profile(
        current_account, db, nickname=request.nickname, avatar_url=request.avatar_url
    )
    return SuccessResponse(data=account.to_dict())


@router.delete("/me/social-links/{provider}", response_model=SuccessResponse[dict[str, Any]])
async def unlink_social_account(
    provider: str,
    current_account: Account = Depends(get_current_account),
    db: AsyncSession = Depends(get_db),
    account_service: AccountService = Depends(get_account_service),
):
    """Remove a provider binding; refused when it is the last way to sign in."""
    account = await account_service.unlink_provider(current_account, normalize_provider(provider), db)
    return SuccessResponse(data=account.to_dict())


@router.delete("/me", response_model=SuccessResponse[dict[str, str]])
async def delete_my_account(
    current_account: Account = Depends(get_current_account),
    db: AsyncSession = Depends(get_db),
    account_service: AccountService = Depends(get_account_service),
):
    await account_service.delete_account(current_account.id, current_account, db)
    return SuccessResponse(data={"message": "Account deleted successfully"})


@router.delete("/{account_id}", response_model=SuccessResponse[dict[str, str]])
async def delete_account(
    account_id: str,
    current_account: Account = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
    account_service: AccountService = Depends(get_account_service),
):
    """Delete any account (admin only)."""
    await account_service.delete_account(account_id, current_account, db)
    return SuccessResponse(data={"message": "Account deleted successfully"})
