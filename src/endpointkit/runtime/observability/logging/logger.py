"""Structured logging for request pipelines.

Leveled, key/value logging that the transport layer uses for diagnostics:
- Immutable loggers with bound context (``bind`` returns a new logger)
- Human-readable console output for development, JSON lines for production
- Scoped context that follows a request across awaits

The server never reaches for a global logger: it receives one through
``server_logger`` or builds one with ``get_logger`` when it is constructed.

Quick Start:
    >>> from endpointkit.runtime.observability.logging import configure_logging, get_logger
    >>> configure_logging(format="console")
    >>> log = get_logger("users-api")
    >>> log.info("request decoded", user_id=123)
    >>> log.bind(route="/users").warning("slow endpoint", duration_ms=812.4)
"""

from __future__ import annotations

import logging
import sys
import time
import traceback
from contextvars import ContextVar, Token
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Callable, Protocol, TextIO, runtime_checkable

import orjson

if TYPE_CHECKING:
    from types import TracebackType

    from endpointkit.foundation.config import LoggingSettings

# Context bound with log_context(); survives awaits within one task
_log_context: ContextVar[dict[str, object]] = ContextVar("log_context", default={})


# ─────────────────────────────────────────────────────────────────────────────
# Logger Protocol & Implementation
# ─────────────────────────────────────────────────────────────────────────────


@runtime_checkable
class StructuredLogger(Protocol):
    """Leveled logger accepting an event plus key/value pairs."""

    def debug(self, event: str, **kw: object) -> None: ...
    def info(self, event: str, **kw: object) -> None: ...
    def warning(self, event: str, **kw: object) -> None: ...
    def error(self, event: str, **kw: object) -> None: ...
    def exception(self, event: str, **kw: object) -> None: ...
    def bind(self, **kw: object) -> StructuredLogger: ...


@dataclass(slots=True)
class BoundLogger:
    """Structured logger with bound context. bind() returns a new logger.

    Example:
        >>> log = BoundLogger(context={"route": "/users"})
        >>> log.info("request decoded", user_id=7)
        # => 10:30:45.120 [info] request decoded route="/users" user_id=7
    """

    context: dict[str, object] = field(default_factory=dict)
    _renderer: LogRenderer | None = None
    _level: int = logging.DEBUG

    def bind(self, **kw: object) -> BoundLogger:
        """New logger with additional bound context."""
        return self._derive(self.context | kw)

    def unbind(self, *keys: str) -> BoundLogger:
        """New logger without the given keys."""
        dropped = set(keys)
        return self._derive({k: v for k, v in self.context.items() if k not in dropped})

    def _derive(self, context: dict[str, object]) -> BoundLogger:
        return BoundLogger(context, self._renderer, self._level)

    def _log(self, level: int, event: str, **kw: object) -> None:
        if level < self._level:
            return
        merged = {**_log_context.get(), **self.context, **kw}
        (self._renderer or _get_renderer()).render(LogEntry(time.time(), _level_name(level), event, merged))

    def debug(self, event: str, **kw: object) -> None: self._log(logging.DEBUG, event, **kw)
    def info(self, event: str, **kw: object) -> None: self._log(logging.INFO, event, **kw)
    def warning(self, event: str, **kw: object) -> None: self._log(logging.WARNING, event, **kw)
    def error(self, event: str, **kw: object) -> None: self._log(logging.ERROR, event, **kw)

    def exception(self, event: str, **kw: object) -> None:
        """Log at error level with the active exception's traceback."""
        self._log(logging.ERROR, event, exc_info=traceback.format_exc(), **kw)


@dataclass(slots=True)
class LogEntry:
    """One log record handed to a renderer."""

    timestamp: float
    level: str
    event: str
    context: dict[str, object]

    @property
    def when(self) -> datetime:
        return datetime.fromtimestamp(self.timestamp, tz=UTC)


class log_context:
    """Context manager adding key/value pairs to every entry logged inside it.

    The server wraps its error handler in one so handler log lines carry the
    pipeline stage that failed.

    Example:
        >>> with log_context(request_id="abc123"):
        ...     log.info("decoding")  # includes request_id
    """

    __slots__ = ("_extra", "_token")

    def __init__(self, **kw: object) -> None:
        self._extra = kw
        self._token: Token[dict[str, object]] | None = None

    def __enter__(self) -> log_context:
        self._token = _log_context.set(_log_context.get() | self._extra)
        return self

    def __exit__(self, exc_type: type[BaseException] | None, exc_val: BaseException | None,
                 exc_tb: TracebackType | None) -> None:
        if self._token is not None:
            _log_context.reset(self._token)
            self._token = None


# ─────────────────────────────────────────────────────────────────────────────
# Renderers
# ─────────────────────────────────────────────────────────────────────────────


@runtime_checkable
class LogRenderer(Protocol):
    """Output sink for log entries."""

    def render(self, entry: LogEntry) -> None: ...


@dataclass(slots=True)
class ConsoleRenderer:
    """Development output: ``HH:MM:SS.mmm [level] event key=value ...``

    Keys are sorted; a traceback bound as ``exc_info`` is printed on the
    lines that follow.
    """

    output: TextIO = field(default_factory=lambda: sys.stderr)
    colors: bool | None = None
    show_timestamp: bool = True

    def __post_init__(self) -> None:
        if self.colors is None:
            isatty = getattr(self.output, "isatty", None)
            self.colors = bool(isatty and isatty())

    def _paint(self, code: str, text: str) -> str:
        return f"{code}{text}{_RESET}" if self.colors else text

    def render(self, entry: LogEntry) -> None:
        fields = dict(entry.context)
        trace = fields.pop("exc_info", None)
        head = [self._paint(_DIM, entry.when.strftime("%H:%M:%S.%f")[:-3])] if self.show_timestamp else []
        head.append(self._paint(_LEVEL_STYLE.get(entry.level, _DIM), f"[{entry.level}]"))
        head.append(self._paint(_BOLD, entry.event))
        pairs = (f"{self._paint(_CYAN, k)}={_format_value(v)}" for k, v in sorted(fields.items()))
        self.output.write(" ".join([*head, *pairs]) + "\n")
        if trace is not None:
            self.output.write(self._paint(_RED, str(trace).rstrip("\n")) + "\n")


@dataclass(slots=True)
class JsonRenderer:
    """One JSON object per line, for log shippers."""

    output: TextIO = field(default_factory=lambda: sys.stdout)

    def render(self, entry: LogEntry) -> None:
        record = {"timestamp": entry.when.isoformat(), "level": entry.level, "event": entry.event}
        record.update(entry.context)
        self.output.write(orjson.dumps(record, option=orjson.OPT_NON_STR_KEYS, default=str).decode() + "\n")


@dataclass(slots=True)
class NoOpRenderer:
    """Discards everything."""

    def render(self, entry: LogEntry) -> None:
        pass


@dataclass(slots=True)
class MemoryRenderer:
    """Keeps entries in a list. Used by tests to assert on diagnostics."""

    entries: list[LogEntry] = field(default_factory=list)

    def render(self, entry: LogEntry) -> None:
        self.entries.append(entry)

    def events(self, level: str | None = None) -> list[str]:
        return [e.event for e in self.entries if level is None or e.level == level]


# ─────────────────────────────────────────────────────────────────────────────
# Configuration
# ─────────────────────────────────────────────────────────────────────────────


@dataclass(slots=True)
class _Defaults:
    """Process-wide renderer and level picked up by get_logger()."""

    renderer: LogRenderer | None = None
    level: int = logging.INFO


_defaults = _Defaults()

_RENDERERS: dict[str, Callable[[TextIO | None, bool | None], LogRenderer]] = {
    "console": lambda out, colors: ConsoleRenderer(output=out or sys.stderr, colors=colors),
    "json": lambda out, colors: JsonRenderer(output=out or sys.stdout),
    "none": lambda out, colors: NoOpRenderer(),
}


def configure_logging(
    format: str = "console",  # noqa: A002
    level: str = "INFO",
    *,
    output: TextIO | None = None,
    colors: bool | None = None,
) -> LogRenderer:
    """Set the default renderer and level. Format: "console", "json" or "none".

    Loggers that were given an explicit renderer are unaffected.
    """
    try:
        factory = _RENDERERS[format]
    except KeyError:
        raise ValueError(f"Unknown format: {format!r}. Use one of {', '.join(_RENDERERS)}") from None
    _defaults.level = logging.getLevelNamesMapping().get(level.upper(), logging.INFO)
    _defaults.renderer = factory(output, colors)
    return _defaults.renderer


def configure_from_settings(settings: LoggingSettings) -> LogRenderer:
    """Apply a LoggingSettings block (see endpointkit.foundation.config)."""
    return configure_logging(settings.format, settings.level, colors=settings.colors)


def get_logger(name: str | None = None, **initial_context: object) -> BoundLogger:
    """Logger at the configured default level. ``name`` is bound as ``logger``."""
    if name:
        initial_context["logger"] = name
    return BoundLogger(initial_context, None, _defaults.level)


def nop_logger() -> BoundLogger:
    """Logger that discards everything."""
    return BoundLogger(_renderer=NoOpRenderer())


def _get_renderer() -> LogRenderer:
    if _defaults.renderer is None:
        _defaults.renderer = ConsoleRenderer()
    return _defaults.renderer


# ─────────────────────────────────────────────────────────────────────────────
# Helpers
# ─────────────────────────────────────────────────────────────────────────────


_RESET, _BOLD, _DIM = "\033[0m", "\033[1m", "\033[2m"
_RED, _GREEN, _YELLOW, _CYAN = "\033[31m", "\033[32m", "\033[33m", "\033[36m"
_LEVEL_STYLE = {"debug": _DIM, "info": _GREEN, "warning": _YELLOW, "error": _RED}


def _level_name(level: int) -> str:
    return logging.getLevelName(level).lower()


def _format_value(v: object) -> str:
    if isinstance(v, str):
        return f'"{v}"'
    if isinstance(v, bool):
        return "true" if v else "false"
    if isinstance(v, (int, float)):
        return str(v)
    if isinstance(v, (dict, list, tuple)):
        return f"<{type(v).__name__} len={len(v)}>"
    return repr(v)
