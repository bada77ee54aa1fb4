"""Client-side session handling for the Palette API."""

from .config import ClientSettings
from .session import (
    ConflictOutcomeError,
    NeedsEmailOutcome,
    SessionAuthError,
    SessionController,
    SessionState,
)
from .token_storage import StoredTokens, TokenStorage

__all__ = [
    "ClientSettings",
    "ConflictOutcomeError",
    "NeedsEmailOutcome",
    "SessionAuthError",
    "SessionController",
    "SessionState",
    "StoredTokens",
    "TokenStorage",
]
