"""SocialBinding model: the pairing of an account with one provider identity.

A provider identity belongs to exactly one account, and an account holds at
most one identity per provider. Both rules are unique indexes so concurrent
signups are arbitrated by the store, not by the pre-checks in the resolver.
"""

from __future__ import annotations

from typing import Any

from sqlalchemy import Boolean, Column, ForeignKey, String, UniqueConstraint
from sqlalchemy.orm import relationship

from .base import BaseModel


class SocialBinding(BaseModel):
    __tablename__ = "social_bindings"

    account_id = Column(String, ForeignKey("accounts.id", ondelete="CASCADE"), nullable=False, index=True)

    # Provider key ("google", "kakao")
    provider = Column(String(32), nullable=False)

    # Provider's stable user identifier (OIDC 'sub', Kakao user id)
    external_id = Column(String, nullable=False)

    # What the provider last told us about the user
    provider_email = Column(String, nullable=True)
    provider_email_verified = Column(Boolean, nullable=True)
    display_name = Column(String, nullable=True)
    avatar_url = Column(String, nullable=True)

    account = relationship("Account", back_populates="bindings")

    __table_args__ = (
        UniqueConstraint("provider", "external_id", name="ux_social_binding_provider_external"),
        UniqueConstraint("account_id", "provider", name="ux_social_binding_account_provider"),
    )

    def to_public_dict(self) -> dict[str, Any]:
        return {
            "provider": self.provider,
            "email": self.provider_email,
            "displayName": self.display_name,
            "linkedAt": self.created_at.isoformat() if self.created_at is not None else None,
        }
