"""Database models for Palette."""

from .base import BaseModel, TimestampMixin, UUIDMixin
from .refresh_token import ConsumedRefreshToken
from .social_binding import SocialBinding

__all__ = [
    "BaseModel",
    "ConsumedRefreshToken",
    "SocialBinding",
    "TimestampMixin",
    "UUIDMixin",
]
