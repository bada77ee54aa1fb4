"""Authentication module for Palette"""

from .jwt_manager import TokenIssuer, TokenPair
from .models import Account, AccountRole

__all__ = ["Account", "AccountRole", "TokenIssuer", "TokenPair"]
