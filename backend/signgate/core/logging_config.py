"""Logging configuration and the security audit logger.

structlog renders through the standard library so uvicorn and third-party
loggers share one stream. Security audit records (CSRF failures, injection
attempts, rejected signing links) carry ``security_event=True`` so they can be
filtered for alerting, distinct from ordinary client errors.

Never pass raw signing tokens or request bodies to these loggers.
"""

import logging
import sys

import structlog

_configured = False


def configure_logging(level: str = "INFO", *, json_logs: bool = False) -> None:
    """Configure stdlib logging and structlog once per process.

    Args:
        level: Logging level name (DEBUG, INFO, WARNING, ERROR, CRITICAL).
        json_logs: Render JSON lines instead of the console renderer.
    """
    global _configured

    numeric_level = getattr(logging, level.upper(), logging.INFO)
    logging.basicConfig(
        level=numeric_level,
        format="%(message)s",
        stream=sys.stdout,
        force=True,
    )
    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)

    processors: list[structlog.typing.Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        structlog.processors.StackInfoRenderer(),
    ]
    if json_logs:
        # JSON needs the traceback as a string; ConsoleRenderer formats its own
        processors += [
            structlog.processors.format_exc_info,
            structlog.processors.JSONRenderer(),
        ]
    else:
        processors.append(structlog.dev.ConsoleRenderer())

    structlog.configure(
        processors=processors,
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )
    _configured = True


def is_configured() -> bool:
    """Whether configure_logging() has run in this process."""
    return _configured


def audit_logger() -> structlog.typing.FilteringBoundLogger:
    """Return a logger bound for security audit events."""
    return structlog.get_logger("signgate.audit").bind(security_event=True)
