"""Shared fixtures: capturing loggers and a raw ASGI driver."""

from __future__ import annotations

from collections.abc import Iterator

import pytest

from endpointkit.foundation.config import clear_settings_cache
from endpointkit.runtime.observability.logging import BoundLogger, MemoryRenderer


class ASGIRecorder:
    """Drives an ASGI app directly and records every message it sends."""

    def __init__(self, body: bytes = b"", headers: list[tuple[bytes, bytes]] | None = None,
                 method: str = "POST", path: str = "/") -> None:
        self.scope = {
            "type": "http",
            "asgi": {"version": "3.0"},
            "http_version": "1.1",
            "method": method,
            "scheme": "http",
            "path": path,
            "raw_path": path.encode(),
            "root_path": "",
            "query_string": b"",
            "headers": list(headers or []),
            "client": ("10.0.0.7", 51234),
            "server": ("testserver", 80),
        }
        self._body = body
        self.messages: list[dict] = []

    async def receive(self) -> dict:
        return {"type": "http.request", "body": self._body, "more_body": False}

    async def send(self, message: dict) -> None:
        self.messages.append(message)

    async def run(self, app: object) -> ASGIRecorder:
        await app(self.scope, self.receive, self.send)  # type: ignore[operator]
        return self

    @property
    def starts(self) -> list[dict]:
        return [m for m in self.messages if m["type"] == "http.response.start"]

    @property
    def terminations(self) -> int:
        return sum(1 for m in self.messages if m["type"] == "http.response.body" and not m.get("more_body", False))

    @property
    def status(self) -> int:
        return self.starts[0]["status"]

    @property
    def body(self) -> bytes:
        return b"".join(m.get("body", b"") for m in self.messages if m["type"] == "http.response.body")

    @property
    def headers(self) -> dict[str, str]:
        return {k.decode(): v.decode() for k, v in self.starts[0]["headers"]}


@pytest.fixture
def memory() -> MemoryRenderer:
    return MemoryRenderer()


@pytest.fixture
def log(memory: MemoryRenderer) -> BoundLogger:
    """Logger writing into the ``memory`` renderer."""
    return BoundLogger(_renderer=memory)


@pytest.fixture(autouse=True)
def clean_settings() -> Iterator[None]:
    clear_settings_cache()
    yield
    clear_settings_cache()
