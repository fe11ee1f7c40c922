"""Transport bindings for endpoints.

- error_handler: transport-agnostic diagnostic error handlers
- http: ASGI/HTTP server binding
"""

from .error_handler import ErrorHandler, ErrorHandlerFunc, LogErrorHandler

__all__ = ["ErrorHandler", "ErrorHandlerFunc", "LogErrorHandler"]
