"""Tests for structlog configuration and the audit logger."""

import logging

import pytest
import structlog

from signgate.core.logging_config import audit_logger, configure_logging, is_configured


@pytest.fixture(autouse=True)
def restore_structlog():
    """Put back whatever configuration the app set up."""
    saved = structlog.get_config()
    root = logging.getLogger()
    handlers, level = root.handlers[:], root.level
    yield
    structlog.configure(**saved)
    root.handlers[:] = handlers
    root.setLevel(level)


def _processors() -> list:
    return structlog.get_config()["processors"]


class TestConfigureLogging:
    """Renderer and exception formatting."""

    def test_console_renderer_formats_its_own_tracebacks(self):
        """Console output leaves exc_info to ConsoleRenderer."""
        configure_logging("DEBUG", json_logs=False)
        processors = _processors()
        assert structlog.processors.format_exc_info not in processors
        assert isinstance(processors[-1], structlog.dev.ConsoleRenderer)

    def test_json_logs_format_exc_info_before_rendering(self):
        """JSON output renders tracebacks to strings first."""
        configure_logging("INFO", json_logs=True)
        processors = _processors()
        assert isinstance(processors[-1], structlog.processors.JSONRenderer)
        assert processors[-2] is structlog.processors.format_exc_info

    def test_level_applied_to_root_logger(self):
        """The level name sets the stdlib root level."""
        configure_logging("warning")
        assert logging.getLogger().level == logging.WARNING

    def test_marks_configured(self):
        """is_configured() reports True once configured."""
        configure_logging()
        assert is_configured()


class TestAuditLogger:
    """Security audit records are tagged."""

    def test_binds_security_event(self, capsys):
        """Audit records carry security_event=True."""
        configure_logging("INFO", json_logs=True)
        audit_logger().warning("CSRF validation failed", client_id="203.0.113.1")
        output = capsys.readouterr().out
        assert '"security_event": true' in output
        assert '"client_id": "203.0.113.1"' in output
