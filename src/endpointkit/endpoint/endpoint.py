"""Endpoint and middleware types and chain composition.

An endpoint is the unit of business logic: ``(ctx, request) -> response``.
A middleware is a function from endpoint to endpoint, adding cross-cutting
behavior (logging, auth, metrics) without the endpoint knowing about it.
"""

from __future__ import annotations

import inspect
from collections.abc import Awaitable
from typing import Callable, Protocol, TypeAlias, TypeVar, Union, runtime_checkable

from endpointkit.foundation.context import Context

Req = TypeVar("Req")
Resp = TypeVar("Resp")

# Plain functions are accepted too; their result is awaited only if awaitable
Endpoint: TypeAlias = Callable[[Context, Req], Union[Awaitable[Resp], Resp]]

Middleware: TypeAlias = Callable[[Endpoint[Req, Resp]], Endpoint[Req, Resp]]


async def invoke(endpoint: Endpoint[Req, Resp], ctx: Context, request: Req) -> Resp:
    """Call ``endpoint`` and await its result when it is awaitable."""
    result = endpoint(ctx, request)
    if inspect.isawaitable(result):
        return await result
    return result


async def nop(ctx: Context, request: object) -> None:
    """Endpoint that does nothing and returns an empty response."""
    return None


def chain(outer: Middleware[Req, Resp], *others: Middleware[Req, Resp]) -> Middleware[Req, Resp]:
    """Compose middlewares into one.

    Requests traverse them in the order they are declared: the first
    middleware is the outermost wrapper (sees the request first and the
    response last).

    Example:
        >>> mw = chain(authenticate, log_calls, instrument)
        >>> endpoint = mw(get_user)   # authenticate → log_calls → instrument → get_user
    """
    def composed(next: Endpoint[Req, Resp]) -> Endpoint[Req, Resp]:
        # Wrap from innermost to outermost
        for mw in reversed(others):
            next = mw(next)
        return outer(next)
    return composed


@runtime_checkable
class Failer(Protocol):
    """Response types carrying business-logic error details.

    If ``failed()`` returns an exception, the transport layer may treat the
    response as a business error and encode it differently from a regular
    successful response. Implementing it is optional.

    Example:
        >>> @dataclass
        ... class WithdrawResponse:
        ...     balance: int
        ...     err: Exception | None = None
        ...     def failed(self) -> Exception | None:
        ...         return self.err
    """

    def failed(self) -> Exception | None: ...


def failure_of(response: object) -> Exception | None:
    """Business failure carried by ``response``, or None."""
    if isinstance(response, Failer):
        return response.failed()
    return None
