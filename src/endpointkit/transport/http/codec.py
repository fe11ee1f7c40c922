"""Request decoders, response encoders and optional response capabilities.

A DecodeRequestFunc turns the inbound Starlette request into the typed
request the endpoint expects. An EncodeResponseFunc writes the endpoint's
typed response onto the ResponseWriter and must terminate it.

Responses and errors may opt into extra behavior by implementing the
Headerer and StatusCoder capabilities; encoders check for them with
``headers_of`` / ``status_code_of``.
"""

from __future__ import annotations

from collections.abc import Awaitable
from typing import Callable, Protocol, TypeAlias, TypeVar, Union, runtime_checkable

import orjson
from pydantic import BaseModel, ValidationError
from starlette.requests import Request

from endpointkit.foundation.context import Context
from endpointkit.foundation.errors import DecodeError

from .writer import ResponseWriter

T = TypeVar("T")
M = TypeVar("M", bound=BaseModel)

DecodeRequestFunc: TypeAlias = Callable[[Context, Request], Union[T, Awaitable[T]]]
EncodeResponseFunc: TypeAlias = Callable[[Context, ResponseWriter, T], Awaitable[None]]

JSON_CONTENT_TYPE = "application/json; charset=utf-8"


# ─────────────────────────────────────────────────────────────────────────────
# Capabilities
# ─────────────────────────────────────────────────────────────────────────────

@runtime_checkable
class Headerer(Protocol):
    """Responses or errors that carry headers to add to the response."""

    def response_headers(self) -> dict[str, str]: ...


@runtime_checkable
class StatusCoder(Protocol):
    """Responses or errors that choose their own HTTP status code."""

    def status_code(self) -> int: ...


def headers_of(obj: object) -> dict[str, str]:
    """Headers offered by ``obj`` through Headerer, else empty."""
    if isinstance(obj, Headerer) and callable(obj.response_headers):
        return obj.response_headers()
    return {}


def status_code_of(obj: object, default: int) -> int:
    """Status code offered by ``obj`` through StatusCoder, else ``default``.

    Attributes named status_code that are not methods (e.g. Starlette's
    HTTPException) are ignored.
    """
    if isinstance(obj, StatusCoder) and callable(obj.status_code):
        return obj.status_code()
    return default


# ─────────────────────────────────────────────────────────────────────────────
# JSON
# ─────────────────────────────────────────────────────────────────────────────

def _default(obj: object) -> object:
    if isinstance(obj, BaseModel):
        return obj.model_dump(mode="json")
    raise TypeError(f"Type is not JSON serializable: {type(obj).__name__}")


def json_dumps(obj: object) -> bytes:
    """Serialize with orjson; pydantic models go through model_dump."""
    return orjson.dumps(obj, default=_default, option=orjson.OPT_NON_STR_KEYS)


async def encode_json_response(ctx: Context, w: ResponseWriter, response: object) -> None:
    """EncodeResponseFunc serializing the response as JSON.

    Many JSON-over-HTTP services can use it as a sensible default. Headers
    from a Headerer response are applied, and a StatusCoder response
    replaces the 200 status. A 204 status is sent without a body.
    """
    code = status_code_of(response, 200)
    # Serialize first: a failure must leave the writer untouched
    body = b"" if code == 204 else json_dumps(response)
    w.headers["Content-Type"] = JSON_CONTENT_TYPE
    for key, val in headers_of(response).items():
        w.headers[key] = val
    w.set_status(code)
    await w.end(body)


# ─────────────────────────────────────────────────────────────────────────────
# Decoders
# ─────────────────────────────────────────────────────────────────────────────

def nop_request_decoder(ctx: Context, request: Request) -> None:
    """DecodeRequestFunc that ignores the request and returns None.

    For endpoints whose request carries no data (health checks, listings).
    """
    return None


def decode_json_request(model: type[M] | None = None) -> DecodeRequestFunc:
    """Build a DecodeRequestFunc reading the JSON body.

    With a pydantic ``model`` the body is validated into an instance of it;
    without one the parsed JSON value is returned as is. Malformed or
    invalid bodies raise DecodeError (400).

    Example:
        >>> class GetUser(BaseModel):
        ...     id: int
        >>> decode = decode_json_request(GetUser)
    """
    async def decode(ctx: Context, request: Request) -> object:
        body = await request.body()
        if model is not None:
            try:
                return model.model_validate_json(body)
            except ValidationError as e:
                raise DecodeError(f"invalid {model.__name__}: {e.error_count()} validation error(s)") from e
        try:
            return orjson.loads(body)
        except orjson.JSONDecodeError as e:
            raise DecodeError(f"malformed JSON body: {e}") from e
    return decode
