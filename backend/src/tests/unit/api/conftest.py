"""Fixtures driving the FastAPI app in-process over httpx.ASGITransport."""

from unittest.mock import AsyncMock, MagicMock

import httpx
import pytest
import pytest_asyncio

from palette.auth.jwt_manager import get_token_issuer
from palette.core.database import get_db
from palette.main import create_app


@pytest.fixture
def app(session_factory):
    app = create_app()

    async def override_get_db():
        async with session_factory() as session:
            yield session

    app.dependency_overrides[get_db] = override_get_db
    return app


@pytest_asyncio.fixture
async def client(app):
    async with httpx.AsyncClient(transport=httpx.ASGITransport(app=app), base_url="http://testserver/api") as c:
        yield c


@pytest.fixture
def token_issuer():
    return get_token_issuer()


@pytest.fixture
def auth_headers(token_issuer):
    def _headers(account) -> dict[str, str]:
        return {"Authorization": f"Bearer {token_issuer.issue(account).access_token}"}

    return _headers


@pytest.fixture
def fake_fetcher(monkeypatch):
    """Replace provider lookups in the auth router with a fetcher returning a fixed assertion."""
    fetcher = MagicMock()
    fetcher.verify_and_fetch = AsyncMock()
    monkeypatch.setattr("palette.api.auth.get_profile_fetcher", lambda provider: fetcher)
    return fetcher
