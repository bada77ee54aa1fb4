from __future__ import annotations

from ...core.exceptions import InvalidProviderTokenError
from ...core.logging import get_logger
from ...services.identity_types import IdentityAssertion
from ..base_auth_adapter import SocialProfileFetcher, parse_verified_flag

logger = get_logger(__name__)

GOOGLE_TOKENINFO_URL = "https://oauth2.googleapis.com/tokeninfo"
GOOGLE_USERINFO_URL = "https://www.googleapis.com/oauth2/v3/userinfo"
GOOGLE_ISSUERS = ("accounts.google.com", "https://accounts.google.com")


class GoogleProfileFetcher(SocialProfileFetcher):
    """Google fetcher accepting either an ID token or an OAuth access token.

    ID tokens (three dot-separated segments) are checked through the tokeninfo
    endpoint, including the audience when GOOGLE_CLIENT_ID is configured.
    Anything else is treated as an access token and sent to userinfo.
    """

    provider = "google"

    async def verify_and_fetch(self, raw_token: str) -> IdentityAssertion:
        if not raw_token or not raw_token.strip():
            raise InvalidProviderTokenError(self.provider, "empty token")
        token = raw_token.strip()

        if token.count(".") == 2:
            data = await self._get_json(GOOGLE_TOKENINFO_URL, params={"id_token": token})
            self._check_id_token_claims(data)
        else:
            data = await self._get_json(GOOGLE_USERINFO_URL, headers={"Authorization": f"Bearer {token}"})

        sub = data.get("sub")
        if not sub:
            raise InvalidProviderTokenError(self.provider, "missing subject")

        return IdentityAssertion(
            provider=self.provider,
            external_id=str(sub),
            email=data.get("email") or None,
            display_name=data.get("name") or None,
            avatar_url=data.get("picture") or None,
            email_verified_by_provider=parse_verified_flag(data.get("email_verified")),
        ).normalized()

    def _check_id_token_claims(self, data: dict) -> None:
        client_id = self._settings.google_client_id
        if client_id and data.get("aud") != client_id:
            logger.info("Google ID token audience mismatch")
            raise InvalidProviderTokenError(self.provider, "audience mismatch")
        issuer = data.get("iss")
        if issuer and issuer not in GOOGLE_ISSUERS:
            raise InvalidProviderTokenError(self.provider, "unexpected issuer")
