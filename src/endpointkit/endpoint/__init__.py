"""Endpoint and middleware algebra.

Example:
    >>> from endpointkit.endpoint import chain
    >>> from endpointkit.middleware import LoggingMiddleware
    >>>
    >>> async def get_user(ctx, req):
    ...     return {"id": req["id"], "name": "ada"}
    >>>
    >>> endpoint = chain(require_token, LoggingMiddleware("get_user"))(get_user)
"""

from .endpoint import Endpoint, Failer, Middleware, chain, failure_of, invoke, nop

__all__ = ["Endpoint", "Failer", "Middleware", "chain", "failure_of", "invoke", "nop"]
