"""Ledger of refresh tokens that have already been rotated away.

Refresh tokens are self-contained JWTs; the only server-side memory is this
table of spent ``jti`` values, kept until the token would have expired
anyway. The primary key makes two concurrent rotations of the same token
collide at insert time.
"""

from sqlalchemy import Column, DateTime, ForeignKey, String

from ..core.database import Base
from .base import utc_now


class ConsumedRefreshToken(Base):
    __tablename__ = "consumed_refresh_tokens"

    jti = Column(String(64), primary_key=True)
    account_id = Column(String, ForeignKey("accounts.id", ondelete="CASCADE"), nullable=False, index=True)
    expires_at = Column(DateTime(timezone=True), nullable=False, index=True)
    consumed_at = Column(DateTime(timezone=True), nullable=False, default=utc_now)

    def __repr__(self) -> str:
        return f"<ConsumedRefreshToken(jti={self.jti})>"
