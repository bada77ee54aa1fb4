"""Social identity providers."""

from .registry import SUPPORTED_PROVIDERS, get_profile_fetcher

__all__ = ["SUPPORTED_PROVIDERS", "get_profile_fetcher"]
