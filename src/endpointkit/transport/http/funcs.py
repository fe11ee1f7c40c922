"""Before/after hook types and ready-made hooks.

A RequestFunc takes information from the inbound request and puts it into
the request context; servers run them before decoding. A ServerResponseFunc
takes information from the context and applies it to the response writer;
servers run them after the endpoint succeeds, before encoding.

Either kind may be a plain function or a coroutine function.
"""

from __future__ import annotations

from collections.abc import Awaitable
from typing import Callable, TypeAlias, Union

from starlette.requests import Request

from endpointkit.foundation.context import Context, ContextKey, with_value

from .writer import ResponseWriter

RequestFunc: TypeAlias = Callable[[Context, Request], Union[Context, Awaitable[Context]]]
ServerResponseFunc: TypeAlias = Callable[[Context, ResponseWriter], Union[Context, Awaitable[Context]]]


# ─────────────────────────────────────────────────────────────────────────────
# Context keys
# ─────────────────────────────────────────────────────────────────────────────

CONTEXT_KEY_REQUEST_METHOD = ContextKey("request_method")
CONTEXT_KEY_REQUEST_URI = ContextKey("request_uri")
CONTEXT_KEY_REQUEST_PATH = ContextKey("request_path")
CONTEXT_KEY_REQUEST_PROTO = ContextKey("request_proto")
CONTEXT_KEY_REQUEST_HOST = ContextKey("request_host")
CONTEXT_KEY_REQUEST_REMOTE_ADDR = ContextKey("request_remote_addr")
CONTEXT_KEY_REQUEST_X_FORWARDED_FOR = ContextKey("request_x_forwarded_for")
CONTEXT_KEY_REQUEST_X_FORWARDED_PROTO = ContextKey("request_x_forwarded_proto")
CONTEXT_KEY_REQUEST_AUTHORIZATION = ContextKey("request_authorization")
CONTEXT_KEY_REQUEST_REFERER = ContextKey("request_referer")
CONTEXT_KEY_REQUEST_USER_AGENT = ContextKey("request_user_agent")
CONTEXT_KEY_REQUEST_X_REQUEST_ID = ContextKey("request_x_request_id")
CONTEXT_KEY_REQUEST_ACCEPT = ContextKey("request_accept")

# Set by the server just before finalizers run
CONTEXT_KEY_RESPONSE_HEADERS = ContextKey("response_headers")
CONTEXT_KEY_RESPONSE_SIZE = ContextKey("response_size")


# ─────────────────────────────────────────────────────────────────────────────
# Hooks
# ─────────────────────────────────────────────────────────────────────────────

def set_content_type(content_type: str) -> ServerResponseFunc:
    """ServerResponseFunc setting the Content-Type header."""
    return set_response_header("Content-Type", content_type)


def set_response_header(key: str, val: str) -> ServerResponseFunc:
    """ServerResponseFunc setting the given response header."""
    def hook(ctx: Context, w: ResponseWriter) -> Context:
        w.headers[key] = val
        return ctx
    return hook


def set_request_header(key: str, val: str) -> RequestFunc:
    """RequestFunc setting the given header on the inbound request.

    Starlette headers are read-only views over the ASGI scope, so the raw
    header list in the scope is edited in place.
    """
    name, raw_val = key.lower().encode("latin-1"), val.encode("latin-1")

    def hook(ctx: Context, r: Request) -> Context:
        raw = r.scope.setdefault("headers", [])
        if not isinstance(raw, list):
            raw = r.scope["headers"] = list(raw)
        raw[:] = [(k, v) for k, v in raw if k.lower() != name]
        raw.append((name, raw_val))
        return ctx
    return hook


def populate_request_context(ctx: Context, r: Request) -> Context:
    """RequestFunc storing common request attributes in the context.

    Values can be read back with the CONTEXT_KEY_REQUEST_* keys; absent
    headers are stored as None.
    """
    headers = r.headers
    pairs = (
        (CONTEXT_KEY_REQUEST_METHOD, r.method),
        (CONTEXT_KEY_REQUEST_URI, str(r.url)),
        (CONTEXT_KEY_REQUEST_PATH, r.url.path),
        (CONTEXT_KEY_REQUEST_PROTO, f"HTTP/{r.scope.get('http_version', '1.1')}"),
        (CONTEXT_KEY_REQUEST_HOST, headers.get("host", r.url.hostname)),
        (CONTEXT_KEY_REQUEST_REMOTE_ADDR, r.client.host if r.client else None),
        (CONTEXT_KEY_REQUEST_X_FORWARDED_FOR, headers.get("x-forwarded-for")),
        (CONTEXT_KEY_REQUEST_X_FORWARDED_PROTO, headers.get("x-forwarded-proto")),
        (CONTEXT_KEY_REQUEST_AUTHORIZATION, headers.get("authorization")),
        (CONTEXT_KEY_REQUEST_REFERER, headers.get("referer")),
        (CONTEXT_KEY_REQUEST_USER_AGENT, headers.get("user-agent")),
        (CONTEXT_KEY_REQUEST_X_REQUEST_ID, headers.get("x-request-id")),
        (CONTEXT_KEY_REQUEST_ACCEPT, headers.get("accept")),
    )
    for key, val in pairs:
        ctx = with_value(ctx, key, val)
    return ctx
