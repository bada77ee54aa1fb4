"""Account models for Palette authentication"""

from enum import Enum

from sqlalchemy import Boolean, Column, DateTime, String
from sqlalchemy.orm import relationship

from ..models.base import BaseModel


class AccountRole(Enum):
    """Single role flag carried by every account"""

    ADMIN = "admin"
    USER = "user"


class Account(BaseModel):
    """Durable user identity; signs in by password and/or social bindings"""

    __tablename__ = "accounts"

    # Stored trimmed and lower-cased; unique when present
    email = Column(String, unique=True, nullable=True, index=True)
    password_hash = Column(String(255), nullable=True)  # Null for social-only accounts
    nickname = Column(String(30), nullable=False, index=True)
    avatar_url = Column(String, nullable=True)
    role = Column(String, nullable=False, default=AccountRole.USER.value)
    email_verified = Column(Boolean, nullable=False, default=False)
    last_login = Column(DateTime(timezone=True), nullable=True)

    # Only the SHA-256 digest of an outstanding verification token is kept
    email_verification_token_hash = Column(String(64), nullable=True, index=True)
    email_verification_expires_at = Column(DateTime(timezone=True), nullable=True)

    bindings = relationship(
        "SocialBinding",
        back_populates="account",
        cascade="all, delete-orphan",
        lazy="selectin",
    )

    def __repr__(self):
        return f"<Account(id='{self.id}', role='{self.role}')>"

    @property
    def role_enum(self) -> AccountRole:
        return AccountRole(self.role)

    @property
    def is_admin(self) -> bool:
        return self.role_enum == AccountRole.ADMIN

    @property
    def has_password(self) -> bool:
        return self.password_hash is not None

    def binding_for(self, provider: str):
        """Return this account's binding at ``provider``, if any."""
        for binding in self.bindings:
            if binding.provider == provider:
                return binding
        return None

    def auth_method_count(self) -> int:
        """Number of independent ways this account can sign in."""
        return len(self.bindings) + (1 if self.has_password else 0)

    def to_dict(self) -> dict:
        """Convert account to dictionary for API responses"""
        return {
            "id": self.id,
            "email": self.email,
            "nickname": self.nickname,
            "avatarUrl": self.avatar_url,
            "role": self.role,
            "emailVerified": bool(self.email_verified),
            "hasPassword": self.has_password,
            "socialLinks": [binding.to_public_dict() for binding in self.bindings],
            "createdAt": self.created_at.isoformat() if self.created_at is not None else None,
            "lastLogin": self.last_login.isoformat() if self.last_login is not None else None,
        }
