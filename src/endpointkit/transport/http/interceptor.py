"""Intercepting response writer used when finalizers are configured.

Wraps the real writer, forwards every call unchanged and records what
finalizers need: the status code, the number of body bytes written and the
headers as they were sent.
"""

from __future__ import annotations

from starlette.datastructures import Headers, MutableHeaders

from .writer import ResponseWriter


class InterceptingWriter:
    """ResponseWriter decorator capturing status code and body size.

    One instance per request; it is not reusable across requests.
    """

    __slots__ = ("_w", "_code", "written")

    def __init__(self, w: ResponseWriter) -> None:
        self._w = w
        self._code: int | None = None
        self.written = 0

    @property
    def headers(self) -> MutableHeaders:
        return self._w.headers

    @property
    def status_code(self) -> int:
        """Explicitly set status, or 200 when none was set."""
        return self._code if self._code is not None else 200

    @property
    def headers_sent(self) -> bool:
        return self._w.headers_sent

    @property
    def finished(self) -> bool:
        return self._w.finished

    def set_status(self, code: int) -> None:
        self._w.set_status(code)
        self._code = code

    async def write(self, data: bytes) -> int:
        n = await self._w.write(data)
        self.written += n
        return n

    async def end(self, data: bytes = b"") -> None:
        await self._w.end(data)
        self.written += len(data)

    def header_snapshot(self) -> Headers:
        """Immutable copy of the current response headers."""
        return Headers(raw=list(self._w.headers.raw))

    def __repr__(self) -> str:
        return f"InterceptingWriter(code={self.status_code}, written={self.written})"
