"""
Unit tests for SessionController against a fake Palette server on httpx.MockTransport.

Tests cover:
- Boot from storage without network calls
- One-shot refresh and replay on token errors
- Single-flight refresh for concurrent token errors
- EMAIL_NOT_VERIFIED never triggering a refresh
- Refresh failure, timeout, the attempt cap and unsaved tokens ending the session
- Social outcomes (NeedsEmail, Conflict, malformed success) and logout
"""

import asyncio
import json
import time
import uuid

import httpx
import pytest
from jose import jwt

from palette.client.config import ClientSettings
from palette.client.session import (
    ConflictOutcomeError,
    NeedsEmailOutcome,
    RefreshAttemptTracker,
    SessionAuthError,
    SessionController,
    SessionState,
)
from palette.client.token_storage import StoredTokens

ACCOUNT_ID = "acc-1"


def _access_token(exp_offset: int = 600) -> str:
    return jwt.encode(
        {"sub": ACCOUNT_ID, "exp": int(time.time()) + exp_offset, "jti": uuid.uuid4().hex, "type": "access"},
        "server-secret",
        algorithm="HS256",
    )


def _error(status_code: int, code: str) -> httpx.Response:
    return httpx.Response(status_code, json={"error": {"code": code, "message": code, "details": {}}})


class FakeServer:
    """Just enough of the Palette API to drive the controller."""

    def __init__(self):
        self.valid_access: set[str] = set()
        self.valid_refresh: set[str] = set()
        self.refresh_calls = 0
        self.refresh_delay = 0.0
        self.email_verified = True
        self.social_response: httpx.Response | None = None
        self.requests: list[httpx.Request] = []

    def mint(self) -> dict:
        access, refresh = _access_token(), f"refresh-{uuid.uuid4().hex}"
        self.valid_access.add(access)
        self.valid_refresh.add(refresh)
        return {
            "accessToken": access,
            "refreshToken": refresh,
            "tokenType": "bearer",
            "expiresIn": 600,
            "user": {"id": ACCOUNT_ID, "email": "me@x.com"},
        }

    def expire_access_tokens(self) -> None:
        self.valid_access.clear()

    async def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        path = request.url.path
        body = json.loads(request.content) if request.content else {}

        if path == "/api/auth/login":
            return httpx.Response(200, json={"data": self.mint()})
        if path == "/api/auth/refresh":
            self.refresh_calls += 1
            if self.refresh_delay:
                await asyncio.sleep(self.refresh_delay)
            token = body.get("refreshToken")
            if token not in self.valid_refresh:
                return _error(401, "REFRESH_INVALID")
            self.valid_refresh.discard(token)
            return httpx.Response(200, json={"data": self.mint()})
        if path == "/api/auth/logout":
            revoked = body.get("refreshToken") in self.valid_refresh
            self.valid_refresh.discard(body.get("refreshToken"))
            return httpx.Response(200, json={"data": {"loggedOut": True, "refreshTokenRevoked": revoked}})
        if path.startswith("/api/auth/") and self.social_response is not None:
            return self.social_response

        auth = request.headers.get("Authorization")
        if not auth:
            return _error(401, "TOKEN_MISSING")
        if auth.removeprefix("Bearer ") not in self.valid_access:
            return _error(401, "TOKEN_EXPIRED")
        if not self.email_verified:
            return _error(401, "EMAIL_NOT_VERIFIED")
        return httpx.Response(200, json={"data": {"ok": True}})

    def paths(self) -> list[str]:
        return [r.url.path for r in self.requests]


@pytest.fixture
def server():
    return FakeServer()


@pytest.fixture
def client_settings(tmp_path):
    return ClientSettings(
        base_url="http://testserver/api",
        token_file=tmp_path / "tokens.json",
        refresh_timeout=1.0,
    )


@pytest.fixture
def make_controller(server, client_settings):
    def _make(settings: ClientSettings | None = None, tracker: RefreshAttemptTracker | None = None):
        settings = settings or client_settings
        http_client = httpx.AsyncClient(transport=httpx.MockTransport(server.handler), base_url=settings.base_url)
        controller = SessionController(settings=settings, http_client=http_client, tracker=tracker)
        return controller

    return _make


# ---------------------------------------------------------------------------
# Boot
# ---------------------------------------------------------------------------


class TestBoot:
    @pytest.mark.asyncio
    async def test_empty_storage(self, make_controller, server):
        controller = make_controller()
        assert await controller.boot() is SessionState.UNAUTHENTICATED
        assert server.requests == []

    @pytest.mark.asyncio
    async def test_fresh_durable_token(self, make_controller, server, client_settings):
        controller = make_controller()
        controller.storage.save(StoredTokens(_access_token(), "refresh-x", remember=True))

        assert await controller.boot() is SessionState.AUTHENTICATED
        assert controller.account_id == ACCOUNT_ID
        assert server.requests == []

    @pytest.mark.asyncio
    async def test_expired_token_goes_unauthenticated_without_network(self, make_controller, server, client_settings):
        controller = make_controller()
        controller.storage.save(StoredTokens(_access_token(-60), "refresh-x", remember=True))

        assert await controller.boot() is SessionState.UNAUTHENTICATED
        assert server.requests == []
        assert controller.storage.load() is None
        assert not client_settings.token_file.exists()

    @pytest.mark.asyncio
    async def test_malformed_token(self, make_controller, server):
        controller = make_controller()
        controller.storage.save(StoredTokens("garbage", "refresh-x", remember=False))

        assert await controller.boot() is SessionState.UNAUTHENTICATED
        assert server.requests == []


# ---------------------------------------------------------------------------
# Login and the refresh protocol
# ---------------------------------------------------------------------------


class TestRefreshProtocol:
    @pytest.mark.asyncio
    async def test_login_remember_writes_durable_slot(self, make_controller, client_settings):
        controller = make_controller()

        await controller.login("me@x.com", "Passw0rd!", remember=True)

        assert controller.state is SessionState.AUTHENTICATED
        assert controller.account_id == ACCOUNT_ID
        assert client_settings.token_file.exists()

    @pytest.mark.asyncio
    async def test_authorized_request_attaches_token(self, make_controller, server):
        controller = make_controller()
        await controller.login("me@x.com", "Passw0rd!")

        resp = await controller.request("GET", "/things")

        assert resp.status_code == 200
        assert server.refresh_calls == 0

    @pytest.mark.asyncio
    async def test_token_error_refreshes_once_and_replays(self, make_controller, server):
        controller = make_controller()
        await controller.login("me@x.com", "Passw0rd!")
        old_refresh = controller.storage.load().refresh_token
        server.expire_access_tokens()

        resp = await controller.request("GET", "/things")

        assert resp.status_code == 200
        assert server.refresh_calls == 1
        assert controller.state is SessionState.AUTHENTICATED
        assert controller.storage.load().refresh_token != old_refresh
        assert server.paths() == ["/api/auth/login", "/api/things", "/api/auth/refresh", "/api/things"]

    @pytest.mark.asyncio
    async def test_concurrent_token_errors_share_one_refresh(self, make_controller, server):
        controller = make_controller()
        await controller.login("me@x.com", "Passw0rd!")
        server.expire_access_tokens()
        server.refresh_delay = 0.05

        responses = await asyncio.gather(*(controller.request("GET", "/things") for _ in range(5)))

        assert [r.status_code for r in responses] == [200] * 5
        assert server.refresh_calls == 1
        assert controller.state is SessionState.AUTHENTICATED

    @pytest.mark.asyncio
    async def test_rotated_away_refresh_token_ends_session(self, make_controller, server, client_settings):
        """A rejected refresh clears storage and signs the client out."""
        controller = make_controller()
        await controller.login("me@x.com", "Passw0rd!", remember=True)
        server.expire_access_tokens()
        server.valid_refresh.clear()

        with pytest.raises(SessionAuthError) as exc_info:
            await controller.request("GET", "/things")

        # The caller sees the original token error, not the refresh failure
        assert exc_info.value.code == "TOKEN_EXPIRED"
        assert controller.state is SessionState.UNAUTHENTICATED
        assert controller.storage.load() is None
        assert not client_settings.token_file.exists()
        assert server.refresh_calls == 1

    @pytest.mark.asyncio
    async def test_email_not_verified_never_refreshes(self, make_controller, server):
        controller = make_controller()
        await controller.login("me@x.com", "Passw0rd!")
        server.email_verified = False

        with pytest.raises(SessionAuthError) as exc_info:
            await controller.request("GET", "/things")

        assert exc_info.value.code == "EMAIL_NOT_VERIFIED"
        assert controller.state is SessionState.EMAIL_VERIFICATION_REQUIRED
        assert server.refresh_calls == 0
        # Tokens are kept: the session is valid, only gated
        assert controller.storage.load() is not None

    @pytest.mark.asyncio
    async def test_refresh_timeout_ends_session(self, make_controller, server, tmp_path):
        settings = ClientSettings(
            base_url="http://testserver/api",
            token_file=tmp_path / "tokens.json",
            refresh_timeout=0.05,
        )
        controller = make_controller(settings)
        await controller.login("me@x.com", "Passw0rd!")
        server.expire_access_tokens()
        server.refresh_delay = 1.0

        with pytest.raises(SessionAuthError):
            await controller.request("GET", "/things")

        assert controller.state is SessionState.UNAUTHENTICATED

    @pytest.mark.asyncio
    async def test_attempt_cap_stops_refresh_storm(self, make_controller, server):
        controller = make_controller(tracker=RefreshAttemptTracker(max_attempts=1, window_seconds=60))
        await controller.login("me@x.com", "Passw0rd!")

        server.expire_access_tokens()
        assert (await controller.request("GET", "/things")).status_code == 200

        server.expire_access_tokens()
        with pytest.raises(SessionAuthError):
            await controller.request("GET", "/things")

        assert server.refresh_calls == 1
        assert controller.state is SessionState.UNAUTHENTICATED
        assert controller.storage.load() is None

    @pytest.mark.asyncio
    async def test_unpersistable_refresh_ends_session(self, make_controller, server, monkeypatch):
        controller = make_controller()
        await controller.login("me@x.com", "Passw0rd!")
        server.expire_access_tokens()

        def _disk_full(tokens):
            raise OSError("No space left on device")

        monkeypatch.setattr(controller.storage, "save", _disk_full)

        with pytest.raises(SessionAuthError) as exc_info:
            await controller.request("GET", "/things")

        assert exc_info.value.code == "TOKEN_EXPIRED"
        assert server.refresh_calls == 1
        assert controller.state is SessionState.UNAUTHENTICATED
        assert controller.account_id is None

    @pytest.mark.asyncio
    async def test_missing_token_without_refresh_token(self, make_controller, server):
        controller = make_controller()

        with pytest.raises(SessionAuthError) as exc_info:
            await controller.request("GET", "/things")

        assert exc_info.value.code == "TOKEN_MISSING"
        assert server.refresh_calls == 0


class TestRefreshAttemptTracker:
    def test_window_rolls(self):
        now = [0.0]
        tracker = RefreshAttemptTracker(max_attempts=2, window_seconds=10, clock=lambda: now[0])

        assert tracker.try_acquire() is True
        assert tracker.try_acquire() is True
        assert tracker.try_acquire() is False

        now[0] = 10.0
        assert tracker.try_acquire() is True

    def test_reset(self):
        tracker = RefreshAttemptTracker(max_attempts=1, window_seconds=10)
        assert tracker.try_acquire() is True
        tracker.reset()
        assert tracker.try_acquire() is True


# ---------------------------------------------------------------------------
# Social outcomes and logout
# ---------------------------------------------------------------------------


class TestSocialAndLogout:
    @pytest.mark.asyncio
    async def test_needs_email_outcome(self, make_controller, server):
        pending = {"provider": "kakao", "externalId": "k-9", "displayName": "Bee", "avatarUrl": None}
        server.social_response = httpx.Response(202, json={"data": {"needsEmail": True, "pendingProfile": pending}})
        controller = make_controller()

        outcome = await controller.social_auth("kakao", "kakao-token", "signup")

        assert isinstance(outcome, NeedsEmailOutcome)
        assert outcome.external_id == "k-9"
        assert controller.state is SessionState.UNAUTHENTICATED

    @pytest.mark.asyncio
    async def test_conflict_outcome(self, make_controller, server):
        server.social_response = _error(409, "EMAIL_ACCOUNT_EXISTS_NEEDS_MANUAL_LINK")
        controller = make_controller()

        with pytest.raises(ConflictOutcomeError) as exc_info:
            await controller.social_auth("google", "id-token", "login")

        assert exc_info.value.code == "EMAIL_ACCOUNT_EXISTS_NEEDS_MANUAL_LINK"
        assert exc_info.value.status_code == 409

    @pytest.mark.asyncio
    async def test_social_login_success(self, make_controller, server):
        data = server.mint()
        data["isNewAccount"] = True
        server.social_response = httpx.Response(201, json={"data": data})
        controller = make_controller()

        result = await controller.social_auth("google", "id-token", "signup")

        assert result["isNewAccount"] is True
        assert controller.state is SessionState.AUTHENTICATED

    @pytest.mark.asyncio
    async def test_null_data_success_is_a_typed_error(self, make_controller, server):
        server.social_response = httpx.Response(200, json={"data": None})
        controller = make_controller()

        with pytest.raises(SessionAuthError) as exc_info:
            await controller.social_auth("google", "id-token", "login")

        assert exc_info.value.code == "MALFORMED_RESPONSE"
        assert controller.state is SessionState.UNAUTHENTICATED
        assert controller.storage.load() is None

    @pytest.mark.asyncio
    async def test_logout_spends_refresh_token(self, make_controller, server):
        controller = make_controller()
        await controller.login("me@x.com", "Passw0rd!", remember=True)
        refresh_token = controller.storage.load().refresh_token

        await controller.logout()

        assert refresh_token not in server.valid_refresh
        assert controller.state is SessionState.UNAUTHENTICATED
        assert controller.storage.load() is None
        assert controller.account_id is None
