"""Client session controller for the Palette API.

Keeps the caller signed in across requests: attaches the access token,
runs the one-shot refresh protocol on token errors and tracks which of the
three session states the client is in.

Refresh tokens rotate, so a second refresh issued with the same token
always fails. Concurrent requests that hit a token error therefore share a
single in-flight refresh and all replay with its result.
"""

import asyncio
import time
from collections import deque
from collections.abc import Callable
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

import httpx

from ..core.logging import get_logger
from ..services.identity_types import ConflictReason, Intent
from .config import ClientSettings
from .token_storage import StoredTokens, TokenStorage, access_token_claims, is_access_token_fresh

logger = get_logger(__name__)

TOKEN_ERROR_CODES = frozenset({"TOKEN_EXPIRED", "TOKEN_INVALID", "TOKEN_MISSING"})
EMAIL_NOT_VERIFIED = "EMAIL_NOT_VERIFIED"
CONFLICT_CODES = frozenset(reason.value for reason in ConflictReason)


class SessionState(str, Enum):
    UNAUTHENTICATED = "unauthenticated"
    AUTHENTICATED = "authenticated"
    EMAIL_VERIFICATION_REQUIRED = "email_verification_required"


class SessionAuthError(Exception):
    """An API failure the session controller could not recover from."""

    def __init__(
        self,
        code: str,
        status_code: int | None = None,
        message: str | None = None,
        details: dict[str, Any] | None = None,
    ):
        self.code = code
        self.status_code = status_code
        self.message = message or code
        self.details = details or {}
        super().__init__(f"{self.code}: {self.message}")


class ConflictOutcomeError(SessionAuthError):
    """The server refused a social login/signup/link with a resolver reason code."""

    @property
    def pending_profile(self) -> dict[str, Any] | None:
        return self.details.get("pendingProfile")


@dataclass(frozen=True)
class NeedsEmailOutcome:
    """Social signup paused until the user supplies an email (see ``complete_signup``)."""

    provider: str
    pending_profile: dict[str, Any] = field(default_factory=dict)

    @property
    def external_id(self) -> str | None:
        return self.pending_profile.get("externalId")


class RefreshAttemptTracker:
    """Caps refresh attempts within a rolling time window."""

    def __init__(self, max_attempts: int, window_seconds: float, clock: Callable[[], float] = time.monotonic):
        self.max_attempts = max_attempts
        self.window_seconds = window_seconds
        self._clock = clock
        self._attempts: deque[float] = deque()

    def try_acquire(self) -> bool:
        """Record an attempt; False when the window is already full."""
        now = self._clock()
        while self._attempts and now - self._attempts[0] >= self.window_seconds:
            self._attempts.popleft()
        if len(self._attempts) >= self.max_attempts:
            return False
        self._attempts.append(now)
        return True

    def reset(self) -> None:
        self._attempts.clear()


def _error_payload(response: httpx.Response) -> dict[str, Any]:
    try:
        body = response.json()
    except ValueError:
        return {}
    if isinstance(body, dict) and isinstance(body.get("error"), dict):
        return body["error"]
    return {}


class SessionController:
    """
    Owns the client's token pair, session state and refresh protocol.

    State transitions:
        unauthenticated -> authenticated      login, signup, link, verify-email
        authenticated -> authenticated        token error, refresh succeeds
        authenticated -> unauthenticated      token error, refresh fails; logout
        any -> email_verification_required    server answers EMAIL_NOT_VERIFIED
    """

    def __init__(
        self,
        settings: ClientSettings | None = None,
        storage: TokenStorage | None = None,
        http_client: httpx.AsyncClient | None = None,
        tracker: RefreshAttemptTracker | None = None,
    ):
        self.settings = settings or ClientSettings()
        self.storage = storage or TokenStorage(self.settings.token_file)
        self._owns_client = http_client is None
        self._client = http_client or httpx.AsyncClient(
            base_url=self.settings.base_url,
            timeout=self.settings.request_timeout,
        )
        self._tracker = tracker or RefreshAttemptTracker(
            self.settings.max_refresh_attempts,
            self.settings.refresh_window_seconds,
        )

        self._state = SessionState.UNAUTHENTICATED
        self._tokens: StoredTokens | None = None
        self._account: dict[str, Any] | None = None
        # Bumped on every token write; lets a failed request see that someone else already refreshed
        self._generation = 0
        self._refresh_task: asyncio.Task[bool] | None = None

    async def __aenter__(self) -> "SessionController":
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    # ------------------------------------------------------------------
    # Accessors
    # ------------------------------------------------------------------

    @property
    def state(self) -> SessionState:
        return self._state

    @property
    def account(self) -> dict[str, Any] | None:
        return self._account

    @property
    def account_id(self) -> str | None:
        if self._account and self._account.get("id"):
            return self._account["id"]
        if self._tokens is None:
            return None
        claims = access_token_claims(self._tokens.access_token) or {}
        return claims.get("sub") or claims.get("user_id")

    # ------------------------------------------------------------------
    # Token bookkeeping
    # ------------------------------------------------------------------

    def _store_tokens(self, tokens: StoredTokens) -> None:
        self.storage.save(tokens)
        self._tokens = tokens
        self._generation += 1

    def _end_session(self) -> None:
        self.storage.clear()
        self._tokens = None
        self._account = None
        self._generation += 1
        self._state = SessionState.UNAUTHENTICATED

    def _establish(self, data: dict[str, Any], remember: bool) -> dict[str, Any]:
        try:
            tokens = StoredTokens.from_response(data, remember)
        except (KeyError, TypeError) as e:
            raise SessionAuthError("MALFORMED_RESPONSE", message=f"Response carried no session tokens: {e}") from e
        self._store_tokens(tokens)
        self._account = data.get("user")
        self._state = SessionState.AUTHENTICATED
        self._tracker.reset()
        return data

    def _auth_headers(self) -> dict[str, str]:
        tokens = self._tokens
        if tokens and is_access_token_fresh(tokens.access_token, self.settings.expiry_leeway_seconds):
            return {"Authorization": f"Bearer {tokens.access_token}"}
        return {}

    def _unwrap(self, response: httpx.Response) -> dict[str, Any]:
        """Return the ``data`` body of a success, raising for the error envelope."""
        if response.is_success:
            try:
                body = response.json()
            except ValueError:
                return {}
            return (body.get("data") or {}) if isinstance(body, dict) else {}

        error = _error_payload(response)
        code = error.get("code") or f"HTTP_{response.status_code}"
        if code == EMAIL_NOT_VERIFIED:
            self._state = SessionState.EMAIL_VERIFICATION_REQUIRED
        exc_class = ConflictOutcomeError if code in CONFLICT_CODES else SessionAuthError
        raise exc_class(code, response.status_code, error.get("message"), error.get("details"))

    # ------------------------------------------------------------------
    # Session operations
    # ------------------------------------------------------------------

    async def boot(self) -> SessionState:
        """Restore a stored session without touching the network."""
        tokens = self.storage.load()
        if tokens is None:
            self._state = SessionState.UNAUTHENTICATED
            return self._state

        if not is_access_token_fresh(tokens.access_token, self.settings.expiry_leeway_seconds):
            logger.info("Stored access token is expired or malformed; starting signed out")
            self._end_session()
            return self._state

        self._tokens = tokens
        self._generation += 1
        self._state = SessionState.AUTHENTICATED
        return self._state

    async def login(self, email: str, password: str, remember: bool = False) -> dict[str, Any]:
        response = await self._client.post(
            "/auth/login",
            json={"email": email, "password": password, "rememberMe": remember},
        )
        return self._establish(self._unwrap(response), remember)

    async def register(
        self,
        email: str,
        password: str,
        nickname: str | None = None,
        remember: bool = False,
    ) -> dict[str, Any]:
        """Password signup. Returns ``{requiresVerification, email}`` when the server holds tokens back."""
        response = await self._client.post(
            "/auth/register",
            json={"email": email, "password": password, "nickname": nickname},
        )
        data = self._unwrap(response)
        if data.get("requiresVerification"):
            self._state = SessionState.EMAIL_VERIFICATION_REQUIRED
            return data
        return self._establish(data, remember)

    async def social_auth(
        self,
        provider: str,
        token: str,
        intent: Intent | str,
        remember: bool = False,
    ) -> dict[str, Any] | NeedsEmailOutcome:
        """
        Log in, sign up or link with a provider token.

        Raises:
            ConflictOutcomeError: the server answered with a resolver reason code.
        """
        intent = Intent(intent)
        body = {"token": token, "intent": intent.value}
        if intent is Intent.LINK:
            # Linking acts on the signed-in account, so it rides the refresh protocol
            response = await self.request("POST", f"/auth/{provider}", json=body)
        else:
            response = await self._client.post(f"/auth/{provider}", json=body)

        data = self._unwrap(response)
        if response.status_code == httpx.codes.ACCEPTED or data.get("needsEmail"):
            return NeedsEmailOutcome(provider=provider, pending_profile=data.get("pendingProfile") or {})
        if intent is Intent.LINK and self._tokens is not None:
            remember = self._tokens.remember
        return self._establish(data, remember)

    async def complete_signup(
        self,
        provider: str,
        external_id: str,
        email: str,
        display_name: str | None = None,
        avatar_url: str | None = None,
        remember: bool = False,
    ) -> dict[str, Any]:
        response = await self._client.post(
            f"/auth/{provider}/complete-signup",
            json={
                "externalId": external_id,
                "email": email,
                "displayName": display_name,
                "avatarUrl": avatar_url,
            },
        )
        return self._establish(self._unwrap(response), remember)

    async def verify_email(self, token: str, remember: bool = False) -> dict[str, Any]:
        response = await self._client.post("/auth/verify-email", json={"token": token})
        return self._establish(self._unwrap(response), remember)

    async def logout(self) -> None:
        """Spend the refresh token server-side (best effort) and forget the pair locally."""
        tokens = self._tokens
        try:
            if tokens is not None:
                await self._client.post("/auth/logout", json={"refreshToken": tokens.refresh_token})
        except httpx.HTTPError as e:
            logger.warning(f"Logout request failed; clearing local session anyway: {e}")
        finally:
            self._end_session()

    # ------------------------------------------------------------------
    # Authenticated requests
    # ------------------------------------------------------------------

    async def _send(self, method: str, url: str, **kwargs: Any) -> tuple[httpx.Response, int]:
        headers = dict(kwargs.pop("headers", None) or {})
        headers.update(self._auth_headers())
        generation = self._generation
        response = await self._client.request(method, url, headers=headers, **kwargs)
        return response, generation

    def _classify(self, response: httpx.Response) -> str | None:
        """Error code of an authorization failure, or None for anything else."""
        if response.status_code != httpx.codes.UNAUTHORIZED:
            return None
        code = _error_payload(response).get("code")
        if code == EMAIL_NOT_VERIFIED:
            self._state = SessionState.EMAIL_VERIFICATION_REQUIRED
            raise SessionAuthError(code, response.status_code, "Email verification required")
        if code in TOKEN_ERROR_CODES:
            return code
        return None

    async def request(self, method: str, url: str, **kwargs: Any) -> httpx.Response:
        """
        Send an authenticated request.

        On TOKEN_EXPIRED, TOKEN_INVALID or TOKEN_MISSING the controller refreshes
        once (sharing any refresh already in flight) and replays the request once.

        Raises:
            SessionAuthError: EMAIL_NOT_VERIFIED, or a token error that refreshing
                could not fix. In the latter case the stored tokens are cleared.
        """
        response, generation = await self._send(method, url, **dict(kwargs))
        code = self._classify(response)
        if code is None:
            return response

        if generation == self._generation or self._tokens is None:
            await self._refresh_or_end_session(code)
        else:
            logger.debug("Tokens changed while the request was in flight; replaying without refresh")

        response, _ = await self._send(method, url, **dict(kwargs))
        replay_code = self._classify(response)
        if replay_code is not None:
            logger.warning("Request still unauthorized after refresh; ending session", extra={"code": replay_code})
            self._end_session()
            raise SessionAuthError(replay_code, response.status_code)
        return response

    async def _refresh_or_end_session(self, original_code: str) -> None:
        task = self._refresh_task
        if task is None or task.done():
            task = asyncio.create_task(self._perform_refresh())
            self._refresh_task = task
        try:
            # shield: a cancelled waiter must not cancel the refresh the others are awaiting
            refreshed = await asyncio.shield(task)
        finally:
            if self._refresh_task is task and task.done():
                self._refresh_task = None

        if not refreshed:
            raise SessionAuthError(original_code, httpx.codes.UNAUTHORIZED)

    async def _perform_refresh(self) -> bool:
        tokens = self._tokens
        if tokens is None or not tokens.refresh_token:
            self._end_session()
            return False

        if not self._tracker.try_acquire():
            logger.warning("Refresh attempt limit reached; ending session")
            self._end_session()
            return False

        try:
            response = await asyncio.wait_for(
                self._client.post("/auth/refresh", json={"refreshToken": tokens.refresh_token}),
                timeout=self.settings.refresh_timeout,
            )
        except (httpx.HTTPError, TimeoutError) as e:
            logger.warning(f"Token refresh failed: {type(e).__name__}")
            self._end_session()
            return False

        if not response.is_success:
            logger.warning(
                "Token refresh rejected; ending session",
                extra={"code": _error_payload(response).get("code"), "status_code": response.status_code},
            )
            self._end_session()
            return False

        try:
            data = response.json()["data"]
            new_tokens = StoredTokens.from_response(data, tokens.remember)
        except (ValueError, KeyError, TypeError) as e:
            logger.warning(f"Malformed refresh response: {e}")
            self._end_session()
            return False

        try:
            self._store_tokens(new_tokens)
        except OSError as e:
            # The old refresh token is already spent server-side
            logger.error(f"Could not persist refreshed tokens; ending session: {e}")
            self._end_session()
            return False
        if data.get("user"):
            self._account = data["user"]
        if self._state is SessionState.UNAUTHENTICATED:
            self._state = SessionState.AUTHENTICATED
        logger.debug("Session tokens refreshed")
        return True
