from __future__ import annotations

from typing import Any

import httpx

from ..core.config import Settings, get_settings_instance
from ..core.exceptions import InvalidProviderTokenError, ProviderUnavailableError
from ..core.http_client import get_http_client
from ..core.logging import get_logger
from ..services.identity_types import IdentityAssertion

logger = get_logger(__name__)


class SocialProfileFetcher:
    """
    Provider profile fetcher interface.

    Turns a raw provider token into a normalized IdentityAssertion. Failures
    surface only as InvalidProviderTokenError (the provider rejected the token)
    or ProviderUnavailableError (timeout, network error, provider 5xx); raw
    provider error bodies never leave the fetcher.
    """

    provider: str = ""

    def __init__(self, settings: Settings | None = None, http_client: httpx.AsyncClient | None = None):
        self._settings = settings or get_settings_instance()
        self._http_client = http_client

    async def verify_and_fetch(self, raw_token: str) -> IdentityAssertion:
        raise NotImplementedError

    async def _client(self) -> httpx.AsyncClient:
        if self._http_client is not None:
            return self._http_client
        return await get_http_client()

    async def _get_json(
        self,
        url: str,
        *,
        params: dict[str, Any] | None = None,
        headers: dict[str, str] | None = None,
    ) -> dict[str, Any]:
        """GET a provider endpoint and map failures onto the two typed errors."""
        client = await self._client()
        try:
            resp = await client.get(
                url,
                params=params,
                headers={"Accept": "application/json", **(headers or {})},
                timeout=self._settings.provider_timeout,
            )
        except httpx.TimeoutException as e:
            logger.warning("Provider request timed out", extra={"provider": self.provider})
            raise ProviderUnavailableError(self.provider, "request timed out") from e
        except httpx.HTTPError as e:
            logger.warning(
                "Provider request failed",
                extra={"provider": self.provider, "error_type": type(e).__name__},
            )
            raise ProviderUnavailableError(self.provider, "network error") from e

        if resp.status_code == 429 or resp.status_code >= 500:
            logger.warning(
                "Provider returned server error",
                extra={"provider": self.provider, "status_code": resp.status_code},
            )
            raise ProviderUnavailableError(self.provider, f"HTTP {resp.status_code}")
        if resp.status_code != 200:
            logger.info(
                "Provider rejected token",
                extra={"provider": self.provider, "status_code": resp.status_code},
            )
            raise InvalidProviderTokenError(self.provider)

        try:
            data = resp.json()
        except ValueError as e:
            raise ProviderUnavailableError(self.provider, "malformed response") from e
        if not isinstance(data, dict):
            raise ProviderUnavailableError(self.provider, "malformed response")
        return data


def parse_verified_flag(value: Any) -> bool | None:
    """Providers report email verification as bool or as "true"/"false"."""
    if value is None:
        return None
    if isinstance(value, bool):
        return value
    if isinstance(value, str):
        lowered = value.strip().lower()
        if lowered in ("true", "1"):
            return True
        if lowered in ("false", "0"):
            return False
    return None
