"""
Shared pytest fixtures and path setup for unit tests.
"""

import os
import sys
from pathlib import Path

# Set required environment variables BEFORE any palette imports to prevent
# Pydantic Settings validation errors. These are test-only defaults.
os.environ.setdefault("PALETTE_DATABASE_URL", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("JWT_SECRET_KEY", "test-secret-key-for-unit-tests")

# Add backend/src to sys.path so palette.* imports work when running pytest from repo root.
PROJECT_SRC = Path(__file__).resolve().parents[2]
if str(PROJECT_SRC) not in sys.path:
    sys.path.insert(0, str(PROJECT_SRC))

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from palette.auth.models import Account
from palette.core.config import get_settings_instance
from palette.core.database import Base
from palette.models.refresh_token import ConsumedRefreshToken  # noqa: F401  (registers the table)
from palette.models.social_binding import SocialBinding


@pytest.fixture
def settings():
    """The real settings instance built from the test environment."""
    return get_settings_instance()


@pytest_asyncio.fixture
async def db_engine():
    """In-memory SQLite engine with the full schema, so unique indexes are real."""
    engine = create_async_engine(
        "sqlite+aiosqlite://",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(db_engine):
    return async_sessionmaker(bind=db_engine, expire_on_commit=False, autoflush=False, class_=AsyncSession)


@pytest_asyncio.fixture
async def db(session_factory):
    async with session_factory() as session:
        yield session


@pytest.fixture
def make_account(db):
    """Persist an account, optionally with social bindings given as (provider, external_id) pairs."""

    async def _make(
        email: str | None = None,
        password_hash: str | None = None,
        nickname: str = "tester",
        bindings: tuple[tuple[str, str], ...] = (),
        role: str = "user",
        email_verified: bool = True,
    ) -> Account:
        account = Account(
            email=email,
            password_hash=password_hash,
            nickname=nickname,
            role=role,
            email_verified=email_verified,
        )
        for provider, external_id in bindings:
            account.bindings.append(SocialBinding(provider=provider, external_id=external_id))
        db.add(account)
        await db.commit()
        return account

    return _make
