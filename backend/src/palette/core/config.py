"""Configuration management for the Palette identity service.

Uses Pydantic Settings for type-safe, environment-based configuration.
"""

from dotenv import load_dotenv
from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

# Load environment variables from .env file
load_dotenv(override=True)


class Settings(BaseSettings):
    """Application settings with environment variable support."""

    # App configuration
    app_name: str = Field("Palette", alias="PALETTE_APP_NAME")
    debug: bool = Field(False, alias="PALETTE_DEBUG")
    version: str = Field("0.0.0-dev", alias="PALETTE_APP_VERSION")
    environment: str = Field("development", alias="PALETTE_ENVIRONMENT")

    # API configuration
    api_v1_prefix: str = "/api"
    api_host: str = Field("127.0.0.1", alias="PALETTE_API_HOST")
    api_port: int = Field(8000, alias="PALETTE_API_PORT")
    allowed_origins: list[str] = ["*"]

    # Database configuration
    database_url: str = Field(alias="PALETTE_DATABASE_URL")
    database_pool_size: int = 20
    database_max_overflow: int = 30
    database_pool_timeout: int = 30
    database_pool_recycle: int = 3600

    # JWT configuration
    jwt_secret_key: str | None = Field(None, alias="JWT_SECRET_KEY")
    jwt_algorithm: str = Field("HS256", alias="JWT_ALGORITHM")
    jwt_access_token_expire_minutes: int = Field(60, alias="JWT_ACCESS_TOKEN_EXPIRE_MINUTES")
    jwt_refresh_token_expire_days: int = Field(7, alias="JWT_REFRESH_TOKEN_EXPIRE_DAYS")

    # Social providers
    google_client_id: str | None = Field(None, alias="GOOGLE_CLIENT_ID")
    kakao_rest_api_key: str | None = Field(None, alias="KAKAO_REST_API_KEY")
    provider_timeout: float = Field(10.0, alias="PALETTE_PROVIDER_TIMEOUT")  # seconds

    # Email verification
    require_email_verification: bool = Field(False, alias="PALETTE_REQUIRE_EMAIL_VERIFICATION")
    email_verification_ttl_hours: int = Field(24, alias="PALETTE_EMAIL_VERIFICATION_TTL_HOURS")
    client_url: str = Field("http://localhost:3000", alias="PALETTE_CLIENT_URL")

    # Admin configuration
    admin_emails: list[str] = Field(default_factory=list, alias="ADMIN_EMAILS")

    # Password policy
    password_policy: str = Field("moderate", alias="PALETTE_PASSWORD_POLICY")
    password_min_length: int = Field(8, alias="PALETTE_PASSWORD_MIN_LENGTH")

    # Logging configuration
    log_level: str = Field("INFO", alias="PALETTE_LOG_LEVEL")
    log_format: str = Field("text", alias="PALETTE_LOG_FORMAT")  # text or json

    @field_validator("database_url")
    @classmethod
    def validate_database_url(cls, v: str) -> str:
        """Validate database URL format."""
        if not v.startswith(("postgresql+asyncpg://", "sqlite+aiosqlite://")):
            raise ValueError("Database URL must be an async PostgreSQL or SQLite URL")
        return v

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        """Validate log level."""
        valid_levels = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
        if v.upper() not in valid_levels:
            raise ValueError(f"Log level must be one of: {valid_levels}")
        return v.upper()

    @field_validator("log_format")
    @classmethod
    def validate_log_format(cls, v: str) -> str:
        """Validate log format."""
        valid_formats = ["text", "json"]
        if v.lower() not in valid_formats:
            raise ValueError(f"Log format must be one of: {valid_formats}")
        return v.lower()

    @field_validator("environment")
    @classmethod
    def validate_environment(cls, v: str) -> str:
        """Validate environment setting."""
        valid_environments = ["development", "staging", "production"]
        if v.lower() not in valid_environments:
            raise ValueError(f"Environment must be one of: {valid_environments}")
        return v.lower()

    @field_validator("password_policy")
    @classmethod
    def validate_password_policy(cls, v: str) -> str:
        """Validate password policy setting."""
        valid_policies = ["moderate", "strict"]
        if v.lower() not in valid_policies:
            raise ValueError(f"Password policy must be one of: {valid_policies}")
        return v.lower()

    @field_validator("admin_emails", mode="before")
    @classmethod
    def validate_admin_emails(cls, v: str | list) -> list:
        """Parse admin emails from comma-separated string or list."""
        if isinstance(v, str):
            if not v.strip():
                return []
            return [email.strip() for email in v.split(",") if email.strip()]
        if isinstance(v, list):
            return [email.strip() for email in v if email.strip()]
        return []

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=True,
        extra="ignore",
    )


def get_settings() -> Settings:
    """Build a fresh settings instance from the environment."""
    return Settings()  # type: ignore[call-arg]


# Global settings instance - will be created when first accessed
settings = None


def get_settings_instance() -> Settings:
    """Get the global settings instance, creating it if necessary."""
    global settings  # noqa: PLW0603
    if settings is None:
        settings = get_settings()
    return settings


def reset_settings_instance() -> None:
    """Drop the cached settings so the next access re-reads the environment."""
    global settings  # noqa: PLW0603
    settings = None
