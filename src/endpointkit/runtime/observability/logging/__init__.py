"""Structured logging module: leveled key/value logging with bound context."""

from .logger import (
    BoundLogger,
    ConsoleRenderer,
    JsonRenderer,
    LogEntry,
    LogRenderer,
    MemoryRenderer,
    NoOpRenderer,
    StructuredLogger,
    configure_from_settings,
    configure_logging,
    get_logger,
    log_context,
    nop_logger,
)

__all__ = [
    "BoundLogger",
    "ConsoleRenderer",
    "JsonRenderer",
    "LogEntry",
    "LogRenderer",
    "MemoryRenderer",
    "NoOpRenderer",
    "StructuredLogger",
    "configure_from_settings",
    "configure_logging",
    "get_logger",
    "log_context",
    "nop_logger",
]
