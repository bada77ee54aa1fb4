"""Two-slot token storage for the Palette client.

The durable slot ("remember me") is a JSON file; the ephemeral slot lives
only as long as the process. Access and refresh tokens are always written
and cleared as a pair, and writing one slot empties the other, so the two
slots never hold different pairs.
"""

import json
import os
import tempfile
from dataclasses import dataclass
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

from jose import JWTError, jwt

from ..core.logging import get_logger

logger = get_logger(__name__)


@dataclass(frozen=True)
class StoredTokens:
    access_token: str
    refresh_token: str
    remember: bool

    @classmethod
    def from_response(cls, data: dict[str, Any], remember: bool) -> "StoredTokens":
        """Build from a ``{"accessToken", "refreshToken"}`` response body."""
        return cls(access_token=data["accessToken"], refresh_token=data["refreshToken"], remember=remember)


def access_token_claims(access_token: str) -> dict[str, Any] | None:
    """Read claims without verifying the signature; None when the token is malformed."""
    try:
        return jwt.get_unverified_claims(access_token)
    except JWTError:
        return None


def is_access_token_fresh(access_token: str | None, leeway_seconds: int = 0) -> bool:
    """Cheap local check: well-formed and not expired (minus ``leeway_seconds``)."""
    if not access_token:
        return False
    claims = access_token_claims(access_token)
    if not claims:
        return False
    exp = claims.get("exp")
    if not isinstance(exp, int | float):
        return False
    return exp - leeway_seconds > datetime.now(UTC).timestamp()


class TokenStorage:
    """Holds at most one token pair across a durable and an ephemeral slot."""

    def __init__(self, token_file: Path | str | None):
        self.token_file = Path(token_file) if token_file else None
        self._ephemeral: StoredTokens | None = None

    def load(self) -> StoredTokens | None:
        """Return the stored pair, checking the durable slot first."""
        durable = self._read_durable()
        if durable is not None:
            return durable
        return self._ephemeral

    def save(self, tokens: StoredTokens) -> None:
        if tokens.remember:
            self._ephemeral = None
            self._write_durable(tokens)
        else:
            self._remove_durable()
            self._ephemeral = tokens

    def clear(self) -> None:
        self._ephemeral = None
        self._remove_durable()

    def _read_durable(self) -> StoredTokens | None:
        if self.token_file is None or not self.token_file.exists():
            return None
        try:
            data = json.loads(self.token_file.read_text(encoding="utf-8"))
            return StoredTokens(
                access_token=data["accessToken"],
                refresh_token=data["refreshToken"],
                remember=True,
            )
        except (OSError, ValueError, KeyError, TypeError) as e:
            logger.warning(f"Discarding unreadable token file: {e}")
            self._remove_durable()
            return None

    def _write_durable(self, tokens: StoredTokens) -> None:
        if self.token_file is None:
            raise ValueError("No token file configured for the durable slot")
        self.token_file.parent.mkdir(parents=True, exist_ok=True)
        payload = json.dumps({"accessToken": tokens.access_token, "refreshToken": tokens.refresh_token})

        # Write to a sibling temp file and swap it in so a crash never leaves half a pair
        fd, tmp_path = tempfile.mkstemp(dir=self.token_file.parent, prefix=".tokens-")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as fh:
                fh.write(payload)
            os.chmod(tmp_path, 0o600)
            os.replace(tmp_path, self.token_file)
        except OSError:
            if os.path.exists(tmp_path):
                os.unlink(tmp_path)
            raise

    def _remove_durable(self) -> None:
        if self.token_file is not None:
            self.token_file.unlink(missing_ok=True)
