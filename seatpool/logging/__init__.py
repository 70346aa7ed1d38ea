"""Structured logging for the seat pool service."""

from seatpool.logging.structured import (
    configure_structlog,
    get_logger,
    bind_context,
    clear_context,
    with_context,
)

__all__ = [
    "configure_structlog",
    "get_logger",
    "bind_context",
    "clear_context",
    "with_context",
]
