"""Structured logging configuration using structlog.

Usage:
    # During application startup (lifespan)
    configure_logging(json_logs=settings.json_logs, log_level=settings.log_level)

    # In application code
    logger = get_logger(__name__)
    logger.info("Service account created", client_id="sa42")
"""

from __future__ import annotations

import logging
from collections.abc import MutableMapping
from typing import Any

import structlog

SENSITIVE_FIELDS: frozenset[str] = frozenset(
    {
        "password",
        "secret",
        "client_secret",
        "token",
        "access_token",
        "authorization",
    }
)

REDACTED_VALUE = "***REDACTED***"


def redact_sensitive_fields(
    logger: Any,
    method_name: str,
    event_dict: MutableMapping[str, Any],
) -> MutableMapping[str, Any]:
    """Replace values of secret-looking keys before rendering."""
    for key in list(event_dict.keys()):
        key_lower = key.lower()
        if key_lower in SENSITIVE_FIELDS or "secret" in key_lower or "token" in key_lower:
            event_dict[key] = REDACTED_VALUE
    return event_dict


def configure_logging(json_logs: bool = True, log_level: str = "INFO") -> None:
    """Configure structlog; JSON output in production, console output otherwise."""
    level = getattr(logging, log_level.upper(), logging.INFO)

    processors: list[structlog.types.Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        redact_sensitive_fields,
        structlog.processors.format_exc_info,
    ]
    if json_logs:
        processors.append(structlog.processors.JSONRenderer())
    else:
        processors.append(structlog.dev.ConsoleRenderer(colors=True))

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.make_filtering_bound_logger(level),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(),
        cache_logger_on_first_use=True,
    )


def get_logger(name: str | None = None) -> Any:
    """Get a structlog logger bound to the given module name."""
    logger = structlog.get_logger()
    if name is not None:
        logger = logger.bind(logger=name)
    return logger
