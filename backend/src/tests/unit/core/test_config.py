"""Unit tests for Settings field validators."""

import pytest
from pydantic import ValidationError

from palette.core.config import Settings, get_settings_instance, reset_settings_instance


class TestValidatePasswordPolicy:
    """Tests for Settings.validate_password_policy field validator."""

    def test_moderate_accepted(self) -> None:
        settings = Settings(PALETTE_PASSWORD_POLICY="moderate")
        assert settings.password_policy == "moderate"

    def test_case_insensitive(self) -> None:
        """Uppercase variants should be normalised to lowercase."""
        settings = Settings(PALETTE_PASSWORD_POLICY="STRICT")
        assert settings.password_policy == "strict"

    def test_invalid_value_rejected(self) -> None:
        with pytest.raises(ValidationError, match="Password policy must be one of"):
            Settings(PALETTE_PASSWORD_POLICY="extreme")


class TestDatabaseUrl:
    def test_async_sqlite_accepted(self) -> None:
        settings = Settings(PALETTE_DATABASE_URL="sqlite+aiosqlite:///./palette.db")
        assert settings.database_url.startswith("sqlite+aiosqlite")

    def test_sync_driver_rejected(self) -> None:
        with pytest.raises(ValidationError, match="async PostgreSQL or SQLite"):
            Settings(PALETTE_DATABASE_URL="postgresql://localhost/palette")


class TestOtherValidators:
    def test_log_level_uppercased(self) -> None:
        assert Settings(PALETTE_LOG_LEVEL="debug").log_level == "DEBUG"

    def test_unknown_log_format_rejected(self) -> None:
        with pytest.raises(ValidationError, match="Log format must be one of"):
            Settings(PALETTE_LOG_FORMAT="xml")

    def test_unknown_environment_rejected(self) -> None:
        with pytest.raises(ValidationError, match="Environment must be one of"):
            Settings(PALETTE_ENVIRONMENT="qa")

    def test_admin_emails_from_comma_separated_string(self) -> None:
        settings = Settings(ADMIN_EMAILS=" root@x.com, ops@x.com ,,")
        assert settings.admin_emails == ["root@x.com", "ops@x.com"]

    def test_blank_admin_emails(self) -> None:
        assert Settings(ADMIN_EMAILS="  ").admin_emails == []


class TestSettingsInstance:
    def test_instance_is_cached_until_reset(self) -> None:
        first = get_settings_instance()
        assert get_settings_instance() is first

        reset_settings_instance()
        try:
            assert get_settings_instance() is not first
        finally:
            reset_settings_instance()
