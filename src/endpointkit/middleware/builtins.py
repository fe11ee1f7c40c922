"""Built-in endpoint middleware for common cross-cutting concerns.

Each middleware is a callable object taking the next endpoint and returning
a wrapped one, so it composes with ``endpointkit.endpoint.chain``.
"""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from typing import Protocol, runtime_checkable

from endpointkit.endpoint import Endpoint, failure_of, invoke
from endpointkit.foundation.context import Context
from endpointkit.foundation.errors import classify_exception
from endpointkit.runtime.observability.logging import StructuredLogger, get_logger


# ─────────────────────────────────────────────────────────────────────────────
# Logging Middleware
# ─────────────────────────────────────────────────────────────────────────────

@dataclass(slots=True)
class LoggingMiddleware:
    """Log every endpoint call with its duration and outcome.

    Successful calls log at INFO; responses carrying a business failure
    (see ``Failer``) log at WARNING; exceptions log at ERROR and are
    re-raised unchanged.

    Example:
        >>> endpoint = LoggingMiddleware("get_user")(get_user)
    """

    name: str
    log: StructuredLogger = field(default_factory=lambda: get_logger("endpointkit.middleware"))

    def __call__(self, next: Endpoint) -> Endpoint:
        async def logged(ctx: Context, request: object) -> object:
            start = time.perf_counter()
            try:
                response = await invoke(next, ctx, request)
            except Exception as e:
                self.log.error("endpoint raised", endpoint=self.name, error=str(e),
                               code=str(classify_exception(e)), duration_ms=_elapsed(start))
                raise
            if (failure := failure_of(response)) is not None:
                self.log.warning("endpoint failed", endpoint=self.name, error=str(failure),
                                 duration_ms=_elapsed(start))
            else:
                self.log.info("endpoint ok", endpoint=self.name, duration_ms=_elapsed(start))
            return response
        return logged


# ─────────────────────────────────────────────────────────────────────────────
# Metrics Middleware
# ─────────────────────────────────────────────────────────────────────────────

@runtime_checkable
class MetricsBackend(Protocol):
    """Protocol for metrics collection backends."""

    def increment(self, metric: str, value: int = 1, tags: dict[str, str] | None = None) -> None: ...
    def timing(self, metric: str, value_ms: float, tags: dict[str, str] | None = None) -> None: ...


@dataclass(slots=True)
class LogMetricsBackend:
    """Default metrics backend that writes metrics as debug log entries."""

    log: StructuredLogger = field(default_factory=lambda: get_logger("endpointkit.metrics"))

    def increment(self, metric: str, value: int = 1, tags: dict[str, str] | None = None) -> None:
        self.log.debug("metric", metric=metric, value=value, **(tags or {}))

    def timing(self, metric: str, value_ms: float, tags: dict[str, str] | None = None) -> None:
        self.log.debug("metric", metric=metric, value_ms=round(value_ms, 2), **(tags or {}))


@dataclass(slots=True)
class MetricsMiddleware:
    """Count calls, errors and time every endpoint call.

    Emits:
    - {prefix}.calls: counter
    - {prefix}.errors: counter for exceptions and business failures
    - {prefix}.duration_ms: timing

    Example:
        >>> from datadog import statsd
        >>> endpoint = MetricsMiddleware("get_user", backend=statsd)(get_user)
    """

    name: str
    backend: MetricsBackend = field(default_factory=LogMetricsBackend)
    prefix: str = "endpoint"

    def __call__(self, next: Endpoint) -> Endpoint:
        tags = {"endpoint": self.name}

        async def measured(ctx: Context, request: object) -> object:
            start = time.perf_counter()
            self.backend.increment(f"{self.prefix}.calls", tags=tags)
            try:
                response = await invoke(next, ctx, request)
            except Exception:
                self.backend.increment(f"{self.prefix}.errors", tags=tags)
                raise
            finally:
                self.backend.timing(f"{self.prefix}.duration_ms", _elapsed(start), tags=tags)
            if failure_of(response) is not None:
                self.backend.increment(f"{self.prefix}.errors", tags=tags)
            return response
        return measured


def _elapsed(start: float) -> float:
    return round((time.perf_counter() - start) * 1000, 2)
