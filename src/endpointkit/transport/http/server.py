"""HTTP server binding: wraps an endpoint as an ASGI application.

One Server instance binds one endpoint with its decoder, encoder and
options. For every request it runs::

    context init → (wrap writer) → before hooks → decode → endpoint
        → after hooks → encode                      (success)
        → error handler → error encoder             (failure)
    → terminate response → finalizers (last registered first)

Example:
    >>> from starlette.applications import Starlette
    >>> from starlette.routing import Route
    >>>
    >>> get_user = Server(
    ...     get_user_endpoint,
    ...     decode_json_request(GetUser),
    ...     encode_json_response,
    ...     server_before(populate_request_context),
    ...     server_finalizer(log_access),
    ... )
    >>> app = Starlette(routes=[Route("/users", get_user, methods=["POST"])])

Requires: pip install endpointkit[serve] (for ``serve``)
"""

from __future__ import annotations

import inspect
from collections.abc import Awaitable
from dataclasses import dataclass, replace
from typing import Callable, Generic, TypeAlias, TypeVar, Union

from starlette.requests import Request
from starlette.types import Receive, Scope, Send

from endpointkit.endpoint import Endpoint, invoke
from endpointkit.foundation.config import get_settings
from endpointkit.foundation.context import Context, background, with_value
from endpointkit.foundation.errors import PipelineError, Stage
from endpointkit.runtime.observability.logging import StructuredLogger, configure_from_settings, get_logger, log_context
from endpointkit.transport.error_handler import ErrorHandler, LogErrorHandler

from .codec import DecodeRequestFunc, EncodeResponseFunc, headers_of, status_code_of
from .funcs import CONTEXT_KEY_RESPONSE_HEADERS, CONTEXT_KEY_RESPONSE_SIZE, RequestFunc, ServerResponseFunc
from .interceptor import InterceptingWriter
from .writer import ASGIResponseWriter, ResponseWriter

Req = TypeVar("Req")
Resp = TypeVar("Resp")
T = TypeVar("T")

# Encodes an error onto the writer; must terminate the response
ErrorEncoder: TypeAlias = Callable[[Context, Exception, ResponseWriter], Union[None, Awaitable[None]]]

# Runs after the response is written; extra response data is in the context
# under the CONTEXT_KEY_RESPONSE_* keys
ServerFinalizerFunc: TypeAlias = Callable[[Context, int, Request], Union[None, Awaitable[None]]]

TEXT_CONTENT_TYPE = "text/plain; charset=utf-8"


async def default_error_encoder(ctx: Context, err: Exception, w: ResponseWriter) -> None:
    """Write the error as plain text.

    Content type text/plain, body ``str(err)``, status 500. Headers from a
    Headerer error are applied and a StatusCoder error chooses its own
    status.
    """
    w.headers["Content-Type"] = TEXT_CONTENT_TYPE
    for key, val in headers_of(err).items():
        w.headers[key] = val
    w.set_status(status_code_of(err, 500))
    await w.end(str(err).encode())


# ─────────────────────────────────────────────────────────────────────────────
# Configuration & Options
# ─────────────────────────────────────────────────────────────────────────────

@dataclass(frozen=True, slots=True)
class ServerConfig:
    """Hooks and collaborators of one Server. Frozen once the server is built."""

    before: tuple[RequestFunc, ...] = ()
    after: tuple[ServerResponseFunc, ...] = ()
    error_encoder: ErrorEncoder = default_error_encoder
    error_handler: ErrorHandler | None = None
    finalizer: tuple[ServerFinalizerFunc, ...] = ()
    logger: StructuredLogger | None = None


ServerOption: TypeAlias = Callable[[ServerConfig], ServerConfig]


def server_before(*before: RequestFunc) -> ServerOption:
    """Hooks run on the request, in order, before it is decoded."""
    return lambda c: replace(c, before=(*c.before, *before))


def server_after(*after: ServerResponseFunc) -> ServerOption:
    """Hooks run on the writer, in order, after the endpoint succeeds and before encoding."""
    return lambda c: replace(c, after=(*c.after, *after))


def server_error_encoder(ee: ErrorEncoder) -> ServerOption:
    """Encoder used for every error met while processing a request.

    Use it for custom error formatting and status codes. By default errors
    go through default_error_encoder.
    """
    return lambda c: replace(c, error_encoder=ee)


def server_error_handler(handler: ErrorHandler) -> ServerOption:
    """Diagnostic handler for every error met while processing a request.

    By default errors are logged through the server's logger.
    """
    return lambda c: replace(c, error_handler=handler)


def server_finalizer(*finalizer: ServerFinalizerFunc) -> ServerOption:
    """Hooks run at the end of every request, last registered first.

    By default no finalizer is registered and the writer is not wrapped.
    """
    return lambda c: replace(c, finalizer=(*c.finalizer, *finalizer))


def server_logger(logger: StructuredLogger) -> ServerOption:
    """Logger for the default error handler and pipeline diagnostics."""
    return lambda c: replace(c, logger=logger)


# ─────────────────────────────────────────────────────────────────────────────
# Server
# ─────────────────────────────────────────────────────────────────────────────

class Server(Generic[Req, Resp]):
    """ASGI application serving one endpoint.

    Configuration is fixed at construction and shared read-only by all
    requests; all per-request state lives in ``serve_http``.
    """

    __slots__ = ("_endpoint", "_dec", "_enc", "_config", "_log", "_debug")

    def __init__(
        self,
        endpoint: Endpoint[Req, Resp],
        dec: DecodeRequestFunc[Req],
        enc: EncodeResponseFunc[Resp],
        *options: ServerOption,
    ) -> None:
        config = ServerConfig()
        for opt in options:
            config = opt(config)
        log = config.logger or get_logger("endpointkit.transport.http")
        if config.error_handler is None:
            config = replace(config, error_handler=LogErrorHandler(log))
        self._endpoint = endpoint
        self._dec = dec
        self._enc = enc
        self._config = replace(config, logger=log)
        self._log = log
        # Read once: a bad environment fails here, not inside a request
        self._debug = get_settings().debug

    @property
    def config(self) -> ServerConfig:
        return self._config

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope["type"] == "lifespan":
            await _lifespan(receive, send)
            return
        if scope["type"] != "http":
            raise RuntimeError(f"endpointkit Server only handles http scopes, got {scope['type']!r}")
        await self.serve_http(Request(scope, receive), ASGIResponseWriter(send))

    async def serve_http(self, request: Request, w: ResponseWriter) -> None:
        """Run the full pipeline for one request against ``w``."""
        cfg = self._config
        ctx = background()
        deferred: list[Callable[[], Awaitable[None]]] = []

        if cfg.finalizer:
            iw = InterceptingWriter(w)
            w = iw

            async def finalize() -> None:
                fctx = with_value(ctx, CONTEXT_KEY_RESPONSE_HEADERS, iw.header_snapshot())
                fctx = with_value(fctx, CONTEXT_KEY_RESPONSE_SIZE, iw.written)
                for f in reversed(cfg.finalizer):
                    try:
                        await _resolve(f(fctx, iw.status_code, request))
                    except Exception:
                        self._log.exception("finalizer failed", stage=str(Stage.FINALIZE), finalizer=_name(f))

            deferred.append(finalize)

        # Pops first: the response is complete before any finalizer sees it
        deferred.append(lambda: self._terminate(w))

        try:
            stage = Stage.BEFORE
            try:
                for before in cfg.before:
                    ctx = await _resolve(before(ctx, request))
                stage = Stage.DECODE
                req = await _resolve(self._dec(ctx, request))
                stage = Stage.ENDPOINT
                resp = await invoke(self._endpoint, ctx, req)
                stage = Stage.AFTER
                for after in cfg.after:
                    ctx = await _resolve(after(ctx, w))
                stage = Stage.ENCODE
                pre_encode = (list(w.headers.raw), w.status_code)
                await _resolve(self._enc(ctx, w, resp))
            except Exception as err:
                if stage is Stage.ENCODE and w.headers_sent:
                    # Status line already on the wire; nothing left to encode an error onto
                    self._log.exception("encoder failed after response started", stage=str(stage))
                else:
                    if stage is Stage.ENCODE:
                        # Drop whatever the encoder set for the success response
                        _rewind(w, *pre_encode)
                    await self._fail(ctx, stage, err, w)
        finally:
            while deferred:
                f = deferred.pop()
                try:
                    await f()
                except Exception:
                    self._log.exception("deferred cleanup failed")

    async def _fail(self, ctx: Context, stage: Stage, err: Exception, w: ResponseWriter) -> None:
        cfg = self._config
        diag = PipelineError.from_exception(stage, err, include_trace=self._debug)
        self._log.debug("request failed", **diag.model_dump(mode="json", exclude_none=True))
        with log_context(stage=str(stage)):
            try:
                await _resolve(cfg.error_handler.handle(ctx, err))  # type: ignore[union-attr]
            except Exception:
                self._log.exception("error handler failed", stage=str(Stage.ERROR_HANDLER))
        try:
            await _resolve(cfg.error_encoder(ctx, err, w))
        except Exception:
            self._log.exception("error encoder failed", stage=str(Stage.ERROR_ENCODE))
            if not w.headers_sent:
                w.set_status(500)

    async def _terminate(self, w: ResponseWriter) -> None:
        if w.finished:
            return
        self._log.warning("response left open by encoder, terminating it", status=w.status_code)
        await w.end()

    def __repr__(self) -> str:
        return f"Server(endpoint={_name(self._endpoint)})"


def serve(server: Server, *, host: str | None = None, port: int | None = None) -> None:
    """Run ``server`` with uvicorn.

    Logging is configured from settings first. Host and port fall back to
    HttpSettings; production environments omit the ``server`` header.
    """
    try:
        import uvicorn
    except ImportError as e:
        raise ImportError(
            "serve() requires uvicorn. "
            "Install with: pip install endpointkit[serve]"
        ) from e

    settings = get_settings()
    configure_from_settings(settings.logging)
    http = settings.http
    uvicorn.run(
        server,
        host=host or http.host,
        port=http.port if port is None else port,
        log_level=http.log_level,
        access_log=http.access_log,
        timeout_keep_alive=int(http.timeout_keep_alive),
        server_header=not settings.is_production,
    )


# ─────────────────────────────────────────────────────────────────────────────
# Helpers
# ─────────────────────────────────────────────────────────────────────────────

async def _resolve(result: T | Awaitable[T]) -> T:
    """Await ``result`` when a hook returned an awaitable."""
    if inspect.isawaitable(result):
        return await result
    return result  # type: ignore[return-value]


async def _lifespan(receive: Receive, send: Send) -> None:
    """Acknowledge lifespan events; a Server has nothing to start or stop."""
    while True:
        message = await receive()
        if message["type"] == "lifespan.startup":
            await send({"type": "lifespan.startup.complete"})
        elif message["type"] == "lifespan.shutdown":
            await send({"type": "lifespan.shutdown.complete"})
            return


def _rewind(w: ResponseWriter, raw: list[tuple[bytes, bytes]], status: int) -> None:
    w.headers.raw[:] = raw
    w.set_status(status)


def _name(fn: object) -> str:
    return getattr(fn, "__qualname__", None) or type(fn).__name__
