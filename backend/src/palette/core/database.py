"""Database connection and session management for Palette.

Provides the async engine, the session factory and the ``get_db`` FastAPI
dependency. The store's unique indexes (email, provider identity) are the
final arbiter of signup races, so sessions here never autocommit.
"""

from collections.abc import AsyncGenerator

from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import declarative_base

from .config import get_settings_instance
from .exceptions import DatabaseConnectionError, DatabaseSessionError
from .logging import get_logger

logger = get_logger(__name__)

# Create declarative base
Base = declarative_base()

# Global async engine and session factory - lazy initialization
_async_engine: AsyncEngine | None = None
_AsyncSessionLocal: async_sessionmaker[AsyncSession] | None = None


def _describe_url(database_url: str) -> str:
    """Return the host/database part of a URL without credentials."""
    if "@" in database_url:
        return database_url.split("@", 1)[1]
    return database_url.split("://", 1)[0]


def get_async_engine() -> AsyncEngine:
    global _async_engine  # noqa: PLW0603
    if _async_engine is None:
        settings = get_settings_instance()
        database_url = settings.database_url
        logger.debug("Database configuration", extra={"database": _describe_url(database_url)})
        try:
            if database_url.startswith("sqlite"):
                # SQLite uses a single-connection pool; pool sizing does not apply
                _async_engine = create_async_engine(database_url, echo=False)
            else:
                _async_engine = create_async_engine(
                    database_url,
                    pool_size=settings.database_pool_size,
                    max_overflow=settings.database_max_overflow,
                    pool_timeout=settings.database_pool_timeout,
                    pool_recycle=settings.database_pool_recycle,
                    pool_pre_ping=True,
                    echo=False,
                )
        except Exception as e:
            logger.error(f"Failed to create async database engine: {e}")
            raise DatabaseConnectionError(f"engine creation: {e}") from e
    return _async_engine


def get_async_session_local() -> async_sessionmaker[AsyncSession]:
    global _AsyncSessionLocal  # noqa: PLW0603
    if _AsyncSessionLocal is None:
        _AsyncSessionLocal = async_sessionmaker(
            bind=get_async_engine(),
            expire_on_commit=False,
            autoflush=False,
            class_=AsyncSession,
        )
    return _AsyncSessionLocal


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """FastAPI dependency yielding a request-scoped session."""
    session_local = get_async_session_local()
    async with session_local() as session:
        try:
            yield session
        except SQLAlchemyError as e:
            logger.error(f"Database session error: {e}")
            await session.rollback()
            raise DatabaseSessionError(f"session operation: {e}") from e


async def init_db() -> None:
    """Create tables for every registered model."""
    # Imported for their side effect of registering tables on Base.metadata
    from ..auth import models as _auth_models  # noqa: F401
    from ..models import refresh_token as _refresh_models  # noqa: F401
    from ..models import social_binding as _binding_models  # noqa: F401

    engine = get_async_engine()
    try:
        async with engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)
        logger.info("Database tables initialized successfully")
    except SQLAlchemyError as e:
        logger.error(f"Database initialization failed: {e}")
        raise DatabaseSessionError(f"database initialization: {e}") from e


async def close_db() -> None:
    """Dispose the engine and forget the cached factory."""
    global _async_engine, _AsyncSessionLocal  # noqa: PLW0603
    if _async_engine is not None:
        await _async_engine.dispose()
        logger.debug("Database connections closed")
    _async_engine = None
    _AsyncSessionLocal = None


async def check_db_connection() -> bool:
    """Check if database connection is working."""
    try:
        async with get_async_engine().connect() as conn:
            await conn.execute(text("SELECT 1"))
        return True
    except SQLAlchemyError as e:
        logger.error(f"Database connection check failed: {e}")
        return False
