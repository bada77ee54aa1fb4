"""Configuration for the Palette client session controller."""

from pathlib import Path

from dotenv import load_dotenv
from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

load_dotenv()


class ClientSettings(BaseSettings):
    """Client settings loaded from ``PALETTE_CLIENT_*`` environment variables."""

    model_config = SettingsConfigDict(env_prefix="PALETTE_CLIENT_", extra="ignore", case_sensitive=False)

    base_url: str = "http://localhost:8000/api"
    token_file: Path = Field(default_factory=lambda: Path.home() / ".palette" / "tokens.json")

    request_timeout: float = 15.0  # seconds
    refresh_timeout: float = 10.0  # seconds

    # Refresh storm guard: at most max_refresh_attempts per rolling window
    max_refresh_attempts: int = 3
    refresh_window_seconds: float = 60.0

    expiry_leeway_seconds: int = 5

    @field_validator("base_url")
    @classmethod
    def strip_trailing_slash(cls, v: str) -> str:
        return v.rstrip("/")

    @field_validator("max_refresh_attempts")
    @classmethod
    def validate_max_refresh_attempts(cls, v: int) -> int:
        if v < 1:
            raise ValueError("max_refresh_attempts must be at least 1")
        return v

    @field_validator("request_timeout", "refresh_timeout", "refresh_window_seconds")
    @classmethod
    def validate_positive(cls, v: float) -> float:
        if v <= 0:
            raise ValueError("timeouts and windows must be positive")
        return v
