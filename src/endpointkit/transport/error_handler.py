"""Transport error handlers.

An error handler receives every error the transport recovers from, for
diagnostic purposes only. Usually that means logging it. It must not be
relied upon to change the response: that is the error encoder's job.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Callable, Protocol, runtime_checkable

from endpointkit.foundation.context import Context
from endpointkit.foundation.errors import classify_exception
from endpointkit.runtime.observability.logging import StructuredLogger


@runtime_checkable
class ErrorHandler(Protocol):
    """Receives a transport error to be processed for diagnostic purposes."""

    def handle(self, ctx: Context, err: Exception) -> None: ...


@dataclass(frozen=True, slots=True)
class LogErrorHandler:
    """Error handler that logs the error at error level."""

    logger: StructuredLogger

    def handle(self, ctx: Context, err: Exception) -> None:
        self.logger.error(str(err), err_type=type(err).__name__, code=str(classify_exception(err)))


@dataclass(frozen=True, slots=True)
class ErrorHandlerFunc:
    """Adapter allowing an ordinary function to be used as an ErrorHandler.

    Example:
        >>> handler = ErrorHandlerFunc(lambda ctx, err: sentry_sdk.capture_exception(err))
    """

    fn: Callable[[Context, Exception], None]

    def handle(self, ctx: Context, err: Exception) -> None:
        self.fn(ctx, err)
