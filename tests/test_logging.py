"""
Unit Tests for Logging Setup
============================
"""

import json

import pytest
import structlog


@pytest.fixture
def restore_structlog():
    yield
    structlog.reset_defaults()
    structlog.contextvars.clear_contextvars()


class TestRedactSecrets:
    """Tests for the redact_secrets processor."""

    def test_blanks_secret_keys(self):
        from smsotp_core.logging_setup import redact_secrets

        event = redact_secrets(None, "info", {
            "event": "OTP queued",
            "otp": "123456",
            "hashed_otp": "abc",
            "auth_token": "tok",
            "session_id": "s1",
        })

        assert event["otp"] == "[REDACTED]"
        assert event["hashed_otp"] == "[REDACTED]"
        assert event["auth_token"] == "[REDACTED]"
        assert event["session_id"] == "s1"

    def test_leaves_other_events_alone(self):
        from smsotp_core.logging_setup import redact_secrets

        event = {"event": "Session created", "session_id": "s1"}

        assert redact_secrets(None, "info", dict(event)) == event


class TestConfigureLogging:
    """Tests for configure_logging."""

    def test_json_output_is_redacted(self, capsys, restore_structlog):
        from smsotp_core.logging_setup import configure_logging

        configure_logging(service_name="sms-otp-auth", level="INFO", json_output=True)
        structlog.get_logger("test").info("Issued", otp="654321", session_id="s1")

        lines = [json.loads(line) for line in capsys.readouterr().out.splitlines() if line]
        issued = [line for line in lines if line["event"] == "Issued"][0]

        assert issued["otp"] == "[REDACTED]"
        assert issued["service"] == "sms-otp-auth"
        assert issued["level"] == "info"
        assert "654321" not in json.dumps(lines)

    def test_level_filtering(self, capsys, restore_structlog):
        from smsotp_core.logging_setup import configure_logging

        configure_logging(service_name="sms-otp-auth", level="WARNING")
        structlog.get_logger("test").info("hidden")
        structlog.get_logger("test").warning("shown")

        out = capsys.readouterr().out
        assert "hidden" not in out
        assert "shown" in out
