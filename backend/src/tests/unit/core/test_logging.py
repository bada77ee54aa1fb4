"""Unit tests for log formatting and email redaction."""

import json
import logging

from palette.core.logging import ColoredFormatter, JSONFormatter, get_logger, redact_email


def _record(msg: str, **extra) -> logging.LogRecord:
    record = logging.LogRecord("palette.test", logging.INFO, __file__, 1, msg, None, None)
    for key, value in extra.items():
        setattr(record, key, value)
    return record


class TestRedactEmail:
    def test_keeps_first_letter_and_hashes_domain(self):
        redacted = redact_email("alice@example.com")
        assert redacted.startswith("a***@")
        assert "example.com" not in redacted
        assert "alice" not in redacted

    def test_same_domain_correlates(self):
        assert redact_email("a@x.com").split("@")[1] == redact_email("b@x.com").split("@")[1]

    def test_missing_or_invalid(self):
        assert redact_email(None) == "<none>"
        assert redact_email("") == "<none>"
        assert redact_email("not-an-email") == "<invalid>"


class TestFormatters:
    def test_json_formatter_includes_extras(self):
        line = JSONFormatter().format(_record("Account created", account_id="acc-1"))
        data = json.loads(line)
        assert data["message"] == "Account created"
        assert data["level"] == "INFO"
        assert data["account_id"] == "acc-1"

    def test_colored_formatter_appends_short_extras(self):
        line = ColoredFormatter(use_colors=False).format(_record("Refresh rejected", code="REFRESH_INVALID"))
        assert "INFO - palette.test - Refresh rejected" in line
        assert line.endswith("| code=REFRESH_INVALID")


def test_get_logger_namespaces_under_palette():
    assert get_logger("identity").name == "palette.identity"
    assert get_logger("palette.services.account_service").name == "palette.services.account_service"
