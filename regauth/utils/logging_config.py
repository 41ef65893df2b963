"""
Logging configuration using structlog for structured logging.

Provides console output for interactive use and JSON output for services,
with a redaction processor so that passwords, tokens and basic-auth blobs
never reach a log sink even if a caller binds them by mistake.
"""

import sys
from typing import Any

import structlog

REDACTED = "***REDACTED***"

LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")

# Event keys whose values are always replaced
SENSITIVE_KEYS = frozenset(
    {
        "password",
        "passwd",
        "secret",
        "token",
        "access_token",
        "identitytoken",
        "auth",
        "authorization",
    }
)


def redact_sensitive_data(logger: Any, method_name: str, event_dict: dict[str, Any]) -> dict[str, Any]:
    """Redact sensitive values from a log event.

    Args:
        logger: The logger instance
        method_name: The name of the called method
        event_dict: The event dictionary to process

    Returns:
        The event dictionary with sensitive values replaced
    """
    for key, value in event_dict.items():
        if key.lower() in SENSITIVE_KEYS and value:
            event_dict[key] = REDACTED
        elif isinstance(value, dict):
            event_dict[key] = redact_sensitive_data(logger, method_name, dict(value))
    return event_dict


def configure_logging(log_level: str = "INFO", json_logs: bool = True) -> None:
    """Configure structured logging.

    Args:
        log_level: Minimum log level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        json_logs: Render JSON lines if True, human-readable console output otherwise

    Raises:
        ValueError: If an invalid logging level is provided
    """
    level = log_level.upper()
    if level not in LOG_LEVELS:
        raise ValueError(f"Invalid log level '{log_level}'")

    renderer: Any
    if json_logs:
        renderer = structlog.processors.JSONRenderer()
    else:
        renderer = structlog.dev.ConsoleRenderer(colors=sys.stderr.isatty())

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            redact_sensitive_data,
            renderer,
        ],
        wrapper_class=structlog.make_filtering_bound_logger(level),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(file=sys.stderr),
        cache_logger_on_first_use=True,
    )


def get_logger(name: str | None = None) -> Any:
    """Get a logger instance.

    Example:
        >>> log = get_logger(__name__)
        >>> log.info("login_succeeded", host="localhost:5000", username="alice")
    """
    return structlog.get_logger(name)
