"""endpointkit - transport-agnostic endpoints with composable middleware.

Write business logic once as an endpoint, wrap it with middleware for
cross-cutting concerns, then bind it to HTTP with decoders, encoders,
hooks and finalizers that run in a well-defined order.

Quick Start:
    >>> from pydantic import BaseModel
    >>> from endpointkit import chain, LoggingMiddleware
    >>> from endpointkit.transport.http import (
    ...     Server, decode_json_request, encode_json_response, serve,
    ... )
    >>>
    >>> class GetUser(BaseModel):
    ...     id: int
    >>>
    >>> async def get_user(ctx, req: GetUser) -> dict:
    ...     return {"id": req.id, "name": "ada"}
    >>>
    >>> endpoint = chain(LoggingMiddleware("get_user"))(get_user)
    >>> server = Server(endpoint, decode_json_request(GetUser), encode_json_response)
    >>> serve(server, port=8080)

Request context:
    >>> from endpointkit import ContextKey, background, with_value
    >>> USER = ContextKey("user")
    >>> ctx = with_value(background(), USER, "ada")
    >>> ctx.value(USER)
    'ada'

Finalizers (access logging):
    >>> from endpointkit.transport.http import CONTEXT_KEY_RESPONSE_SIZE, server_finalizer
    >>> def log_access(ctx, code, request):
    ...     log.info("served", path=request.url.path, status=code, bytes=ctx.value(CONTEXT_KEY_RESPONSE_SIZE))
    >>> server = Server(endpoint, decode, encode, server_finalizer(log_access))
"""

from __future__ import annotations

__version__ = "0.1.0"

# Context
from .foundation.context import Context, ContextKey, background, value, with_value

# Errors
from .foundation.errors import DecodeError, ErrorCode, HTTPError, PipelineError, Stage, classify_exception

# Config
from .foundation.config import EndpointkitSettings, clear_settings_cache, get_settings

# Endpoint algebra
from .endpoint import Endpoint, Failer, Middleware, chain, failure_of, invoke, nop

# Middleware
from .middleware import LoggingMiddleware, LogMetricsBackend, MetricsBackend, MetricsMiddleware

# Logging
from .runtime.observability.logging import BoundLogger, configure_logging, get_logger, nop_logger

# Transport
from .transport import ErrorHandler, ErrorHandlerFunc, LogErrorHandler

__all__ = [
    "__version__",
    # Context
    "Context", "ContextKey", "background", "value", "with_value",
    # Errors
    "DecodeError", "ErrorCode", "HTTPError", "PipelineError", "Stage", "classify_exception",
    # Config
    "EndpointkitSettings", "get_settings", "clear_settings_cache",
    # Endpoint
    "Endpoint", "Failer", "Middleware", "chain", "failure_of", "invoke", "nop",
    # Middleware
    "LoggingMiddleware", "LogMetricsBackend", "MetricsBackend", "MetricsMiddleware",
    # Logging
    "BoundLogger", "configure_logging", "get_logger", "nop_logger",
    # Transport
    "ErrorHandler", "ErrorHandlerFunc", "LogErrorHandler",
]
