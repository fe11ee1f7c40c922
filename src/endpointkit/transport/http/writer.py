"""Outbound response sink over an ASGI ``send`` callable.

Encoders write through the ResponseWriter interface instead of returning a
Starlette Response object, so hooks and finalizers can observe and decorate
the response while it is being produced.

Lifecycle: headers and status are mutable until the first ``write`` or
``end``; after that the status line is on the wire. ``end`` terminates the
response and may be called exactly once.
"""

from __future__ import annotations

from typing import Protocol, runtime_checkable

from starlette.datastructures import MutableHeaders
from starlette.types import Send


@runtime_checkable
class ResponseWriter(Protocol):
    """Response contract shared by the ASGI writer and its decorators."""

    @property
    def headers(self) -> MutableHeaders: ...

    @property
    def status_code(self) -> int: ...

    @property
    def headers_sent(self) -> bool: ...

    @property
    def finished(self) -> bool: ...

    def set_status(self, code: int) -> None: ...

    async def write(self, data: bytes) -> int: ...

    async def end(self, data: bytes = b"") -> None: ...


class ASGIResponseWriter:
    """ResponseWriter sending ``http.response.*`` messages to an ASGI server.

    A response terminated by a single ``end(body)`` call without any prior
    ``write`` gets a Content-Length header, except for statuses that carry no
    body (1xx, 204, 304); otherwise the body is streamed.

    Example:
        >>> w = ASGIResponseWriter(send)
        >>> w.headers["Content-Type"] = "text/plain; charset=utf-8"
        >>> w.set_status(201)
        >>> await w.end(b"created")
    """

    __slots__ = ("_send", "_headers", "_status", "_started", "_finished")

    def __init__(self, send: Send, status: int = 200) -> None:
        self._send = send
        self._headers = MutableHeaders()
        self._status = status
        self._started = False
        self._finished = False

    @property
    def headers(self) -> MutableHeaders:
        return self._headers

    @property
    def status_code(self) -> int:
        return self._status

    @property
    def headers_sent(self) -> bool:
        return self._started

    @property
    def finished(self) -> bool:
        return self._finished

    def set_status(self, code: int) -> None:
        if self._started:
            raise RuntimeError("status cannot change after the response has started")
        self._status = code

    async def write(self, data: bytes) -> int:
        if self._finished:
            raise RuntimeError("write after end")
        await self._start()
        if data:
            await self._send({"type": "http.response.body", "body": bytes(data), "more_body": True})
        return len(data)

    async def end(self, data: bytes = b"") -> None:
        if self._finished:
            raise RuntimeError("response already finished")
        if not self._started and _allows_body(self._status) and "content-length" not in self._headers:
            self._headers["Content-Length"] = str(len(data))
        await self._start()
        self._finished = True
        await self._send({"type": "http.response.body", "body": bytes(data), "more_body": False})

    async def _start(self) -> None:
        if self._started:
            return
        self._started = True
        await self._send({"type": "http.response.start", "status": self._status, "headers": self._headers.raw})

    def __repr__(self) -> str:
        state = "finished" if self._finished else "started" if self._started else "pending"
        return f"ASGIResponseWriter(status={self._status}, {state})"


def _allows_body(status: int) -> bool:
    return status >= 200 and status not in (204, 304)
