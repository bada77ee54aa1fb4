from __future__ import annotations

import httpx

from ..core.config import Settings
from ..core.exceptions import UnsupportedProviderError
from .base_auth_adapter import SocialProfileFetcher
from .google.auth_adapter import GoogleProfileFetcher
from .kakao.auth_adapter import KakaoProfileFetcher

SUPPORTED_PROVIDERS: tuple[str, ...] = ("google", "kakao")


def normalize_provider(provider: str | None) -> str:
    """Lower-case a provider name and reject the ones without a fetcher."""
    prov = (provider or "").strip().lower()
    if prov not in SUPPORTED_PROVIDERS:
        raise UnsupportedProviderError(provider or "")
    return prov


def get_profile_fetcher(
    provider: str,
    settings: Settings | None = None,
    http_client: httpx.AsyncClient | None = None,
) -> SocialProfileFetcher:
    """
    Factory for social profile fetchers.

    The resolver dispatches on provider only here; account matching is the
    same for every provider.
    """
    prov = normalize_provider(provider)
    if prov == "google":
        return GoogleProfileFetcher(settings, http_client)
    if prov == "kakao":
        return KakaoProfileFetcher(settings, http_client)
    raise UnsupportedProviderError(provider)
