"""Structured logging with structlog.

Provides:
- JSON-formatted log output for production
- Request-scoped context (request_id, pool_id, subscription_id)
- Factory function for creating loggers
"""

import logging
import sys
from typing import Optional
from uuid import UUID

import structlog
from structlog.types import EventDict, WrappedLogger

from seatpool.config import LOG_JSON, LOG_LEVEL


def add_service_info(
    logger: WrappedLogger,
    method_name: str,
    event_dict: EventDict,
) -> EventDict:
    """Add service information to log entries."""
    event_dict["service"] = "seatpool"
    return event_dict


def configure_structlog(
    json_format: bool = True,
    log_level: str = "INFO",
) -> None:
    """Configure structlog for the application.

    Args:
        json_format: If True, output JSON logs (for production).
                     If False, output human-readable logs (for development).
        log_level: The minimum log level to output (DEBUG, INFO, WARNING, ERROR).
    """
    logging.basicConfig(
        format="%(message)s",
        stream=sys.stdout,
        level=getattr(logging, log_level.upper()),
    )

    shared_processors: list = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        add_service_info,
    ]

    if json_format:
        renderer = [
            structlog.processors.format_exc_info,
            structlog.processors.UnicodeDecoder(),
            structlog.processors.JSONRenderer(),
        ]
    else:
        renderer = [
            structlog.processors.format_exc_info,
            structlog.dev.ConsoleRenderer(colors=True),
        ]

    structlog.configure(
        processors=shared_processors + renderer,
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )


def get_logger(name: str) -> structlog.stdlib.BoundLogger:
    """Get a structured logger with the given name.

    Args:
        name: Logger name, typically __name__ of the calling module.

    Returns:
        A structlog BoundLogger instance.

    Example:
        logger = get_logger(__name__)
        logger.info("seat_assigned", pool_id=str(pool.id), seat_index=3)
    """
    return structlog.get_logger(name)


def bind_context(
    request_id: Optional[str] = None,
    pool_id: Optional[UUID] = None,
    subscription_id: Optional[UUID] = None,
) -> None:
    """Bind context variables for the current request scope.

    These values will be included in all subsequent log entries
    until clear_context() is called.
    """
    values = {}
    if request_id:
        values["request_id"] = request_id
    if pool_id:
        values["pool_id"] = str(pool_id)
    if subscription_id:
        values["subscription_id"] = str(subscription_id)
    if values:
        structlog.contextvars.bind_contextvars(**values)


def clear_context() -> None:
    """Clear all bound context variables.

    Should be called at the end of request processing.
    """
    structlog.contextvars.clear_contextvars()


def with_context(**kwargs) -> dict[str, str]:
    """Bind extra context and return what was bound.

    Example:
        ctx = with_context(operation="status_sweep", run="nightly")
        # ... do work ...
        structlog.contextvars.unbind_contextvars(*ctx)
    """
    values = {
        key: value if isinstance(value, str) else str(value)
        for key, value in kwargs.items()
        if value is not None
    }
    if values:
        structlog.contextvars.bind_contextvars(**values)
    return values


# Initialize from configuration
# Can be reconfigured by calling configure_structlog() in api/main.py
configure_structlog(json_format=LOG_JSON, log_level=LOG_LEVEL)
