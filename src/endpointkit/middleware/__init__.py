"""Endpoint middleware for cross-cutting concerns.

Example:
    >>> from endpointkit.endpoint import chain
    >>> from endpointkit.middleware import LoggingMiddleware, MetricsMiddleware
    >>>
    >>> # Logging sees the request first and the response last
    >>> endpoint = chain(LoggingMiddleware("get_user"), MetricsMiddleware("get_user"))(get_user)
"""

from .builtins import LoggingMiddleware, LogMetricsBackend, MetricsBackend, MetricsMiddleware

__all__ = [
    "LoggingMiddleware",
    "LogMetricsBackend",
    "MetricsBackend",
    "MetricsMiddleware",
]
