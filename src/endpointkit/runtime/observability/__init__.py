"""Observability: structured logging for the request pipeline."""

from .logging import (
    BoundLogger,
    MemoryRenderer,
    StructuredLogger,
    configure_from_settings,
    configure_logging,
    get_logger,
    log_context,
    nop_logger,
)

__all__ = [
    "BoundLogger",
    "MemoryRenderer",
    "StructuredLogger",
    "configure_from_settings",
    "configure_logging",
    "get_logger",
    "log_context",
    "nop_logger",
]
