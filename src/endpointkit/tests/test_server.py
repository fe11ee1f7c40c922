"""Tests for the HTTP server pipeline.

Most tests drive the server as a raw ASGI app through ASGIRecorder so every
message it sends can be asserted on; a few go through Starlette's TestClient.
"""

from __future__ import annotations

import pytest
from pydantic import ValidationError
from starlette.requests import Request
from starlette.testclient import TestClient

from endpointkit.foundation.config import clear_settings_cache
from endpointkit.foundation.context import Context, ContextKey, with_value
from endpointkit.foundation.errors import HTTPError
from endpointkit.runtime.observability.logging import BoundLogger, MemoryRenderer
from endpointkit.transport import ErrorHandlerFunc
from endpointkit.transport.http import (
    CONTEXT_KEY_REQUEST_HOST,
    CONTEXT_KEY_REQUEST_METHOD,
    CONTEXT_KEY_REQUEST_PATH,
    CONTEXT_KEY_REQUEST_PROTO,
    CONTEXT_KEY_REQUEST_REMOTE_ADDR,
    CONTEXT_KEY_REQUEST_URI,
    CONTEXT_KEY_REQUEST_USER_AGENT,
    CONTEXT_KEY_REQUEST_X_REQUEST_ID,
    CONTEXT_KEY_RESPONSE_HEADERS,
    CONTEXT_KEY_RESPONSE_SIZE,
    ASGIResponseWriter,
    InterceptingWriter,
    ResponseWriter,
    Server,
    decode_json_request,
    encode_json_response,
    nop_request_decoder,
    populate_request_context,
    server_after,
    server_before,
    server_error_encoder,
    server_error_handler,
    server_finalizer,
    server_logger,
    set_content_type,
    set_request_header,
    set_response_header,
)

from .conftest import ASGIRecorder

TRACE = ContextKey("trace")


class InvalidInput(Exception):
    pass


async def echo(ctx: Context, request: object) -> object:
    return request


async def explode(ctx: Context, request: object) -> object:
    raise RuntimeError("db down")


def reject(ctx: Context, r: Request) -> object:
    raise InvalidInput("bad input")


def read_trace(ctx: Context, r: Request) -> Context:
    return with_value(ctx, TRACE, r.headers.get("x-trace"))


def write_trace(ctx: Context, w: ResponseWriter) -> Context:
    w.headers["X-Trace"] = ctx.value(TRACE)
    return ctx


class Finalized:
    """Finalizer recording what it observed."""

    def __init__(self, label: str = "F", trail: list[str] | None = None) -> None:
        self.label = label
        self.trail = trail if trail is not None else []
        self.calls: list[tuple[int, int, object]] = []

    def __call__(self, ctx: Context, code: int, r: Request) -> None:
        self.trail.append(self.label)
        self.calls.append((code, ctx.value(CONTEXT_KEY_RESPONSE_SIZE), ctx.value(CONTEXT_KEY_RESPONSE_HEADERS)))


def json_body(body: bytes, *headers: tuple[bytes, bytes]) -> ASGIRecorder:
    return ASGIRecorder(body, [(b"content-type", b"application/json"), *headers])


# ─────────────────────────────────────────────────────────────────────────────
# Success path
# ─────────────────────────────────────────────────────────────────────────────

class TestSuccess:
    @pytest.mark.asyncio
    async def test_full_pipeline(self, log: BoundLogger) -> None:
        fin = Finalized()
        server = Server(
            echo, decode_json_request(), encode_json_response,
            server_before(read_trace), server_after(write_trace), server_finalizer(fin), server_logger(log),
        )
        rec = await json_body(b'{"id": 1, "name": "x"}', (b"x-trace", b"abc")).run(server)

        assert rec.status == 200
        assert rec.body == b'{"id":1,"name":"x"}'
        assert rec.headers["x-trace"] == "abc"
        assert rec.headers["content-type"] == "application/json; charset=utf-8"
        assert rec.headers["content-length"] == str(len(rec.body))

        [(code, size, headers)] = fin.calls
        assert code == 200
        assert size == len(rec.body)
        assert headers["x-trace"] == "abc"

    @pytest.mark.asyncio
    async def test_before_hooks_thread_context(self) -> None:
        first, second = ContextKey("first"), ContextKey("second")
        seen: dict[str, object] = {}

        def one(ctx: Context, r: Request) -> Context:
            return with_value(ctx, first, 1)

        async def two(ctx: Context, r: Request) -> Context:
            return with_value(ctx, second, ctx.value(first) + 1)

        async def endpoint(ctx: Context, request: object) -> dict:
            seen.update(first=ctx.value(first), second=ctx.value(second))
            return {}

        await ASGIRecorder().run(Server(endpoint, nop_request_decoder, encode_json_response, server_before(one, two)))
        assert seen == {"first": 1, "second": 2}

    @pytest.mark.asyncio
    async def test_after_hook_context_reaches_encoder(self) -> None:
        stamp = ContextKey("stamp")
        seen: list[object] = []

        def mark(ctx: Context, w: ResponseWriter) -> Context:
            return with_value(ctx, stamp, "after")

        async def enc(ctx: Context, w: ResponseWriter, resp: object) -> None:
            seen.append(ctx.value(stamp))
            await w.end()

        await ASGIRecorder().run(Server(echo, nop_request_decoder, enc, server_after(mark)))
        assert seen == ["after"]

    @pytest.mark.asyncio
    async def test_writer_is_wrapped_only_with_finalizers(self) -> None:
        seen: list[ResponseWriter] = []

        async def enc(ctx: Context, w: ResponseWriter, resp: object) -> None:
            seen.append(w)
            await w.end()

        rec = ASGIRecorder()
        plain = ASGIResponseWriter(rec.send)
        await Server(echo, nop_request_decoder, enc).serve_http(Request(rec.scope, rec.receive), plain)
        await Server(echo, nop_request_decoder, enc, server_finalizer(Finalized())).serve_http(
            Request(rec.scope, rec.receive), ASGIResponseWriter(rec.send))

        assert seen[0] is plain
        assert isinstance(seen[1], InterceptingWriter)

    @pytest.mark.asyncio
    async def test_status_coder_response(self) -> None:
        class Created(dict):
            def status_code(self) -> int:
                return 201

            def response_headers(self) -> dict[str, str]:
                return {"Location": "/users/1"}

        async def create(ctx: Context, request: object) -> Created:
            return Created(id=1)

        rec = await ASGIRecorder().run(Server(create, nop_request_decoder, encode_json_response))
        assert rec.status == 201
        assert rec.headers["location"] == "/users/1"
        assert rec.body == b'{"id":1}'

    def test_sync_hooks_and_decoder_via_test_client(self) -> None:
        def dec(ctx: Context, r: Request) -> str:
            return r.query_params.get("name", "anon")

        def greet(ctx: Context, request: str) -> dict:
            return {"hello": request}

        server = Server(greet, dec, encode_json_response, server_after(set_response_header("X-Api-Version", "2")))
        response = TestClient(server).get("/greet", params={"name": "ada"})

        assert response.status_code == 200
        assert response.json() == {"hello": "ada"}
        assert response.headers["x-api-version"] == "2"


# ─────────────────────────────────────────────────────────────────────────────
# Error path
# ─────────────────────────────────────────────────────────────────────────────

class TestErrors:
    @pytest.mark.asyncio
    async def test_decode_failure_uses_default_encoder(self, memory: MemoryRenderer, log: BoundLogger) -> None:
        fin = Finalized()
        reached: list[object] = []

        async def endpoint(ctx: Context, request: object) -> None:
            reached.append(request)

        server = Server(endpoint, reject, encode_json_response, server_finalizer(fin), server_logger(log))
        rec = await ASGIRecorder(b"garbage").run(server)

        assert rec.status == 500
        assert rec.body == b"bad input"
        assert rec.headers["content-type"] == "text/plain; charset=utf-8"
        assert reached == []
        assert fin.calls[0][:2] == (500, len(b"bad input"))
        assert memory.events("error") == ["bad input"]

    @pytest.mark.asyncio
    async def test_endpoint_failure_reaches_error_handler(self, log: BoundLogger) -> None:
        handled: list[Exception] = []
        after_ran: list[bool] = []

        def after(ctx: Context, w: ResponseWriter) -> Context:
            after_ran.append(True)
            return ctx

        server = Server(
            explode, nop_request_decoder, encode_json_response,
            server_after(after), server_error_handler(ErrorHandlerFunc(lambda ctx, err: handled.append(err))),
            server_logger(log),
        )
        rec = await ASGIRecorder().run(server)

        assert rec.status == 500
        assert rec.body == b"db down"
        assert [str(e) for e in handled] == ["db down"]
        assert after_ran == []

    @pytest.mark.asyncio
    async def test_decode_failure_skips_after_hooks(self, log: BoundLogger) -> None:
        after_ran: list[bool] = []

        def after(ctx: Context, w: ResponseWriter) -> Context:
            after_ran.append(True)
            return ctx

        rec = await ASGIRecorder().run(
            Server(echo, reject, encode_json_response, server_after(after), server_logger(log)))

        assert rec.status == 500
        assert after_ran == []

    @pytest.mark.asyncio
    async def test_default_handler_logs_with_stage(self, memory: MemoryRenderer, log: BoundLogger) -> None:
        await ASGIRecorder().run(Server(explode, nop_request_decoder, encode_json_response, server_logger(log)))

        [entry] = [e for e in memory.entries if e.level == "error"]
        assert entry.event == "db down"
        assert entry.context["stage"] == "endpoint"
        assert entry.context["err_type"] == "RuntimeError"
        assert entry.context["code"] == "INTERNAL"

    @pytest.mark.asyncio
    async def test_http_error_sets_status_and_headers(self, log: BoundLogger) -> None:
        async def endpoint(ctx: Context, request: object) -> None:
            raise HTTPError(404, "user not found", {"X-Reason": "missing"})

        rec = await ASGIRecorder().run(Server(endpoint, nop_request_decoder, encode_json_response, server_logger(log)))
        assert rec.status == 404
        assert rec.body == b"user not found"
        assert rec.headers["x-reason"] == "missing"

    @pytest.mark.asyncio
    async def test_malformed_json_is_400(self, log: BoundLogger) -> None:
        server = Server(echo, decode_json_request(), encode_json_response, server_logger(log))
        rec = await json_body(b"{not json").run(server)
        assert rec.status == 400
        assert rec.body.startswith(b"malformed JSON body")

    @pytest.mark.asyncio
    async def test_before_hook_failure_skips_decode(self, log: BoundLogger) -> None:
        decoded: list[bool] = []

        def deny(ctx: Context, r: Request) -> Context:
            raise HTTPError(401, "no token")

        def dec(ctx: Context, r: Request) -> None:
            decoded.append(True)

        rec = await ASGIRecorder().run(Server(echo, dec, encode_json_response, server_before(deny), server_logger(log)))
        assert rec.status == 401
        assert decoded == []

    @pytest.mark.asyncio
    async def test_encode_failure_before_headers_sent(self, log: BoundLogger) -> None:
        async def enc(ctx: Context, w: ResponseWriter, resp: object) -> None:
            raise ValueError("cannot serialize")

        rec = await ASGIRecorder().run(Server(echo, nop_request_decoder, enc, server_logger(log)))
        assert rec.status == 500
        assert rec.body == b"cannot serialize"
        assert rec.terminations == 1

    @pytest.mark.asyncio
    async def test_unserializable_response_leaves_no_success_headers(self, log: BoundLogger) -> None:
        class Blob:
            pass

        class Created(dict):
            def status_code(self) -> int:
                return 201

            def response_headers(self) -> dict[str, str]:
                return {"Location": "/users/1", "Content-Encoding": "gzip"}

        async def create(ctx: Context, request: object) -> Created:
            return Created(payload=Blob())

        server = Server(create, nop_request_decoder, encode_json_response,
                        server_after(set_response_header("X-Api-Version", "2")), server_logger(log))
        rec = await ASGIRecorder().run(server)

        assert rec.status == 500
        assert rec.headers["content-type"] == "text/plain; charset=utf-8"
        assert "location" not in rec.headers
        assert "content-encoding" not in rec.headers
        assert rec.headers["x-api-version"] == "2"

    @pytest.mark.asyncio
    async def test_encoder_changes_are_rewound_before_error_encoding(self, log: BoundLogger) -> None:
        async def enc(ctx: Context, w: ResponseWriter, resp: object) -> None:
            w.headers["Content-Encoding"] = "gzip"
            w.set_status(201)
            raise ValueError("compressor failed")

        status_seen: list[int] = []

        def error_encoder(ctx: Context, err: Exception, w: ResponseWriter) -> None:
            status_seen.append(w.status_code)

        rec = await ASGIRecorder().run(
            Server(echo, nop_request_decoder, enc, server_error_encoder(error_encoder), server_logger(log)))

        assert status_seen == [200]
        assert rec.status == 200
        assert rec.body == b""
        assert "content-encoding" not in rec.headers

    @pytest.mark.asyncio
    async def test_settings_read_once_at_construction(
        self, monkeypatch: pytest.MonkeyPatch, log: BoundLogger,
    ) -> None:
        server = Server(explode, nop_request_decoder, encode_json_response, server_logger(log))

        monkeypatch.setenv("ENDPOINTKIT_HTTP_PORT", "not-a-port")
        clear_settings_cache()
        rec = await ASGIRecorder().run(server)

        assert rec.status == 500
        assert rec.body == b"db down"
        with pytest.raises(ValidationError):
            Server(explode, nop_request_decoder, encode_json_response)

    @pytest.mark.asyncio
    async def test_encode_failure_after_headers_sent(self, memory: MemoryRenderer, log: BoundLogger) -> None:
        handled: list[Exception] = []

        async def enc(ctx: Context, w: ResponseWriter, resp: object) -> None:
            await w.write(b"partial")
            raise ValueError("stream broke")

        server = Server(
            echo, nop_request_decoder, enc,
            server_error_handler(ErrorHandlerFunc(lambda ctx, err: handled.append(err))), server_logger(log),
        )
        rec = await ASGIRecorder().run(server)

        assert rec.status == 200
        assert rec.body == b"partial"
        assert rec.terminations == 1
        assert handled == []
        assert "encoder failed after response started" in memory.events("error")

    @pytest.mark.asyncio
    async def test_error_handler_failure_still_encodes(self, memory: MemoryRenderer, log: BoundLogger) -> None:
        def broken(ctx: Context, err: Exception) -> None:
            raise ConnectionError("sentry unreachable")

        server = Server(explode, nop_request_decoder, encode_json_response,
                        server_error_handler(ErrorHandlerFunc(broken)), server_logger(log))
        rec = await ASGIRecorder().run(server)

        assert rec.status == 500
        assert rec.body == b"db down"
        assert "error handler failed" in memory.events("error")

    @pytest.mark.asyncio
    async def test_error_encoder_left_open_is_terminated(self, memory: MemoryRenderer, log: BoundLogger) -> None:
        def teapot(ctx: Context, err: Exception, w: ResponseWriter) -> None:
            w.set_status(418)

        rec = await ASGIRecorder().run(
            Server(explode, nop_request_decoder, encode_json_response, server_error_encoder(teapot), server_logger(log)))

        assert rec.status == 418
        assert rec.body == b""
        assert rec.terminations == 1
        assert "response left open by encoder, terminating it" in memory.events("warning")

    @pytest.mark.asyncio
    async def test_error_encoder_failure_falls_back_to_500(self, memory: MemoryRenderer, log: BoundLogger) -> None:
        async def broken(ctx: Context, err: Exception, w: ResponseWriter) -> None:
            w.set_status(422)
            raise TypeError("template missing")

        rec = await ASGIRecorder().run(
            Server(explode, nop_request_decoder, encode_json_response, server_error_encoder(broken), server_logger(log)))

        assert rec.status == 500
        assert rec.terminations == 1
        assert "error encoder failed" in memory.events("error")


# ─────────────────────────────────────────────────────────────────────────────
# Finalizers & termination
# ─────────────────────────────────────────────────────────────────────────────

class TestFinalizers:
    @pytest.mark.asyncio
    async def test_run_last_registered_first(self) -> None:
        trail: list[str] = []
        server = Server(
            echo, nop_request_decoder, encode_json_response,
            server_finalizer(Finalized("F1", trail), Finalized("F2", trail)),
            server_finalizer(Finalized("F3", trail)),
        )
        await ASGIRecorder().run(server)
        assert trail == ["F3", "F2", "F1"]

    @pytest.mark.asyncio
    @pytest.mark.parametrize("decoder, endpoint, code", [
        (nop_request_decoder, echo, 200),
        (reject, echo, 500),
        (nop_request_decoder, explode, 500),
    ], ids=["success", "decode-error", "endpoint-error"])
    async def test_fire_once_on_every_path(self, decoder, endpoint, code: int, log: BoundLogger) -> None:
        fin = Finalized()
        rec = await ASGIRecorder().run(
            Server(endpoint, decoder, encode_json_response, server_finalizer(fin), server_logger(log)))
        [(observed, size, _)] = fin.calls
        assert observed == rec.status == code
        assert size == len(rec.body)

    @pytest.mark.asyncio
    async def test_failing_finalizer_does_not_stop_others(self, memory: MemoryRenderer, log: BoundLogger) -> None:
        trail: list[str] = []

        def broken(ctx: Context, code: int, r: Request) -> None:
            raise RuntimeError("access log full")

        server = Server(echo, nop_request_decoder, encode_json_response,
                        server_finalizer(Finalized("F1", trail), broken), server_logger(log))
        rec = await ASGIRecorder().run(server)

        assert trail == ["F1"]
        assert rec.status == 200
        assert "finalizer failed" in memory.events("error")

    @pytest.mark.asyncio
    async def test_response_complete_before_finalizers(self) -> None:
        rec = ASGIRecorder()
        observed: list[int] = []

        def count(ctx: Context, code: int, r: Request) -> None:
            observed.append(rec.terminations)

        await rec.run(Server(echo, nop_request_decoder, encode_json_response, server_finalizer(count)))
        assert observed == [1]

    @pytest.mark.asyncio
    @pytest.mark.parametrize("decode_fails", [False, True])
    @pytest.mark.parametrize("endpoint_fails", [False, True])
    async def test_terminated_exactly_once(self, decode_fails: bool, endpoint_fails: bool, log: BoundLogger) -> None:
        server = Server(
            explode if endpoint_fails else echo,
            reject if decode_fails else nop_request_decoder,
            encode_json_response,
            server_finalizer(Finalized()),
            server_logger(log),
        )
        rec = await ASGIRecorder().run(server)
        assert len(rec.starts) == 1
        assert rec.terminations == 1

    @pytest.mark.asyncio
    async def test_encoder_that_never_ends_is_terminated(self, log: BoundLogger) -> None:
        async def lazy(ctx: Context, w: ResponseWriter, resp: object) -> None:
            w.set_status(202)

        rec = await ASGIRecorder().run(Server(echo, nop_request_decoder, lazy, server_logger(log)))
        assert rec.status == 202
        assert rec.terminations == 1


# ─────────────────────────────────────────────────────────────────────────────
# Ready-made hooks
# ─────────────────────────────────────────────────────────────────────────────

class TestHooks:
    @pytest.mark.asyncio
    async def test_populate_request_context(self) -> None:
        seen: dict[str, object] = {}

        async def endpoint(ctx: Context, request: object) -> dict:
            for name, key in [
                ("method", CONTEXT_KEY_REQUEST_METHOD), ("uri", CONTEXT_KEY_REQUEST_URI),
                ("path", CONTEXT_KEY_REQUEST_PATH), ("proto", CONTEXT_KEY_REQUEST_PROTO),
                ("host", CONTEXT_KEY_REQUEST_HOST), ("remote", CONTEXT_KEY_REQUEST_REMOTE_ADDR),
                ("agent", CONTEXT_KEY_REQUEST_USER_AGENT), ("request_id", CONTEXT_KEY_REQUEST_X_REQUEST_ID),
            ]:
                seen[name] = ctx.value(key)
            return {}

        rec = ASGIRecorder(headers=[(b"host", b"api.example.com"), (b"user-agent", b"pytest")],
                           method="GET", path="/users")
        await rec.run(Server(endpoint, nop_request_decoder, encode_json_response, server_before(populate_request_context)))

        assert seen == {
            "method": "GET",
            "uri": "http://api.example.com/users",
            "path": "/users",
            "proto": "HTTP/1.1",
            "host": "api.example.com",
            "remote": "10.0.0.7",
            "agent": "pytest",
            "request_id": None,
        }

    @pytest.mark.asyncio
    async def test_set_request_header_visible_to_decoder(self) -> None:
        def dec(ctx: Context, r: Request) -> list[str]:
            return r.headers.getlist("x-tenant")

        rec = ASGIRecorder(headers=[(b"x-tenant", b"other")])
        server = Server(
            echo, dec, encode_json_response,
            server_before(populate_request_context, set_request_header("X-Tenant", "acme")),
        )
        await rec.run(server)
        assert rec.body == b'["acme"]'

    @pytest.mark.asyncio
    async def test_set_content_type(self) -> None:
        async def enc(ctx: Context, w: ResponseWriter, resp: object) -> None:
            await w.end(b"id,name\n1,x\n")

        rec = await ASGIRecorder().run(
            Server(echo, nop_request_decoder, enc, server_after(set_content_type("text/csv"))))
        assert rec.headers["content-type"] == "text/csv"
        assert rec.body == b"id,name\n1,x\n"


# ─────────────────────────────────────────────────────────────────────────────
# ASGI integration
# ─────────────────────────────────────────────────────────────────────────────

def test_lifespan_is_acknowledged() -> None:
    server = Server(echo, nop_request_decoder, encode_json_response)
    with TestClient(server) as client:
        assert client.post("/", json={"ok": True}).status_code == 200


@pytest.mark.asyncio
async def test_non_http_scope_rejected() -> None:
    server = Server(echo, nop_request_decoder, encode_json_response)

    async def receive() -> dict:
        return {"type": "websocket.connect"}

    async def send(message: dict) -> None:
        pass

    with pytest.raises(RuntimeError, match="http scopes"):
        await server({"type": "websocket"}, receive, send)


def test_repr_names_endpoint() -> None:
    assert repr(Server(echo, nop_request_decoder, encode_json_response)) == "Server(endpoint=echo)"
