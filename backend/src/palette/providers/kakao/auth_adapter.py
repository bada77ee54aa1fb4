from __future__ import annotations

from typing import Any

from ...core.exceptions import InvalidProviderTokenError
from ...services.identity_types import IdentityAssertion
from ..base_auth_adapter import SocialProfileFetcher, parse_verified_flag

KAKAO_USER_ME_URL = "https://kapi.kakao.com/v2/user/me"


class KakaoProfileFetcher(SocialProfileFetcher):
    """Kakao fetcher; resolves an access token through /v2/user/me.

    Email is an optional consent item at Kakao, so assertions from here may
    legitimately carry no email.
    """

    provider = "kakao"

    async def verify_and_fetch(self, raw_token: str) -> IdentityAssertion:
        if not raw_token or not raw_token.strip():
            raise InvalidProviderTokenError(self.provider, "empty token")

        data = await self._get_json(
            KAKAO_USER_ME_URL,
            headers={"Authorization": f"Bearer {raw_token.strip()}"},
        )

        kakao_id = data.get("id")
        if kakao_id is None or kakao_id == "":
            raise InvalidProviderTokenError(self.provider, "missing user id")

        account: dict[str, Any] = data.get("kakao_account") or {}
        profile: dict[str, Any] = account.get("profile") or {}
        properties: dict[str, Any] = data.get("properties") or {}

        # Unverified or invalid emails are reported but flagged by Kakao
        email = account.get("email") if account.get("is_email_valid", True) else None

        return IdentityAssertion(
            provider=self.provider,
            external_id=str(kakao_id),
            email=email or None,
            display_name=properties.get("nickname") or profile.get("nickname") or None,
            avatar_url=properties.get("profile_image") or profile.get("profile_image_url") or None,
            email_verified_by_provider=parse_verified_flag(account.get("is_email_verified")) if email else None,
        ).normalized()
