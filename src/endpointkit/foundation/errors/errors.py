"""Standardized errors for the request pipeline.

Provides error codes, the pipeline stage a failure happened in, a structured
error description for diagnostics, and the HTTPError exception that carries
its own status code and headers to the error encoder.
Uses Pydantic for validation and serialization of the diagnostic model.
"""

from __future__ import annotations

import traceback
from enum import StrEnum
from functools import lru_cache
from typing import Annotated, Mapping, Self

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    computed_field,
    field_validator,
)


class ErrorCode(StrEnum):
    """Machine-readable classification of a pipeline failure."""
    INVALID_REQUEST = "INVALID_REQUEST"
    UNAUTHORIZED = "UNAUTHORIZED"
    FORBIDDEN = "FORBIDDEN"
    NOT_FOUND = "NOT_FOUND"
    TIMEOUT = "TIMEOUT"
    UNAVAILABLE = "UNAVAILABLE"
    ENCODING_FAILED = "ENCODING_FAILED"
    INTERNAL = "INTERNAL"


class Stage(StrEnum):
    """Pipeline stage in which an error was raised."""
    BEFORE = "before"
    DECODE = "decode"
    ENDPOINT = "endpoint"
    AFTER = "after"
    ENCODE = "encode"
    ERROR_HANDLER = "error_handler"
    ERROR_ENCODE = "error_encode"
    FINALIZE = "finalize"


# Status -> code for HTTPError, checked before message patterns
_STATUS_CODES: dict[int, ErrorCode] = {
    400: ErrorCode.INVALID_REQUEST,
    401: ErrorCode.UNAUTHORIZED,
    403: ErrorCode.FORBIDDEN,
    404: ErrorCode.NOT_FOUND,
    408: ErrorCode.TIMEOUT,
    422: ErrorCode.INVALID_REQUEST,
    503: ErrorCode.UNAVAILABLE,
    504: ErrorCode.TIMEOUT,
}

_PATTERN_CODES: dict[str, ErrorCode] = {
    "timeout": ErrorCode.TIMEOUT,
    "validation": ErrorCode.INVALID_REQUEST,
    "decode": ErrorCode.INVALID_REQUEST,
    "json": ErrorCode.INVALID_REQUEST,
    "value": ErrorCode.INVALID_REQUEST,
    "invalid": ErrorCode.INVALID_REQUEST,
    "permission": ErrorCode.FORBIDDEN,
    "forbidden": ErrorCode.FORBIDDEN,
    "auth": ErrorCode.UNAUTHORIZED,
    "notfound": ErrorCode.NOT_FOUND,
    "connection": ErrorCode.UNAVAILABLE,
    "encode": ErrorCode.ENCODING_FAILED,
}
_PATTERN_KEYS = tuple(_PATTERN_CODES.keys())


@lru_cache(maxsize=256)
def _classify_cached(exc_key: str) -> ErrorCode:
    haystack = exc_key.lower()
    for pattern in _PATTERN_KEYS:
        if pattern in haystack:
            return _PATTERN_CODES[pattern]
    return ErrorCode.INTERNAL


def classify_exception(exc: BaseException) -> ErrorCode:
    """Map an exception to an error code.

    HTTPError is classified by its status; anything else by pattern
    matching on the exception type name and message.
    """
    if isinstance(exc, HTTPError):
        return _STATUS_CODES.get(exc.status, ErrorCode.INTERNAL if exc.status >= 500 else ErrorCode.INVALID_REQUEST)
    return _classify_cached(f"{type(exc).__name__} {exc}")


class PipelineError(BaseModel):
    """Structured description of a failure inside the request pipeline.

    Used for diagnostics (logging), never written to the client.

    Attributes:
        stage: Pipeline stage that raised
        message: Human-readable error message
        code: Machine-readable classification
        exc_type: Exception class name
        details: Optional traceback text
    """

    model_config = ConfigDict(
        frozen=True,
        str_strip_whitespace=True,
        json_schema_extra={
            "title": "Pipeline Error",
            "examples": [{
                "stage": "decode",
                "message": "body is not valid JSON",
                "code": "INVALID_REQUEST",
                "exc_type": "DecodeError",
            }],
        },
    )

    stage: Stage
    message: str = Field(default="", description="Human-readable error message")
    code: ErrorCode = Field(default=ErrorCode.INTERNAL)
    exc_type: Annotated[str, Field(min_length=1)] = "Exception"
    details: str | None = Field(default=None, repr=False)

    @field_validator("message", mode="before")
    @classmethod
    def _ensure_message(cls, v: str | BaseException) -> str:
        """Accept exception objects and extract message."""
        return str(v) if isinstance(v, BaseException) else v

    @computed_field
    @property
    def is_client_error(self) -> bool:
        """Whether the failure was caused by the inbound request."""
        return self.code in _CLIENT_CODES

    @classmethod
    def from_exception(cls, stage: Stage, exc: BaseException, *, include_trace: bool = False) -> Self:
        """Create from exception with auto-classification."""
        return cls(
            stage=stage,
            message=str(exc),
            code=classify_exception(exc),
            exc_type=type(exc).__name__,
            details="".join(traceback.format_exception(exc)) if include_trace else None,
        )

    def render(self) -> str:
        """One-line summary for log output."""
        return f"[{self.stage}] {self.exc_type} ({self.code}): {self.message}"

    __str__ = render


_CLIENT_CODES: frozenset[ErrorCode] = frozenset({
    ErrorCode.INVALID_REQUEST,
    ErrorCode.UNAUTHORIZED,
    ErrorCode.FORBIDDEN,
    ErrorCode.NOT_FOUND,
})


class HTTPError(Exception):
    """Exception carrying the HTTP status and headers for its response.

    Satisfies the StatusCoder and Headerer capabilities, so the default
    error encoder uses them instead of 500 and no extra headers.

    Example:
        >>> raise HTTPError(404, "user not found")
    """

    __slots__ = ("status", "message", "headers")

    def __init__(self, status: int, message: str = "", headers: Mapping[str, str] | None = None) -> None:
        self.status = status
        self.message = message
        self.headers = dict(headers or {})
        super().__init__(message)

    def status_code(self) -> int:
        return self.status

    def response_headers(self) -> dict[str, str]:
        return dict(self.headers)

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self.status}, {self.message!r})"


class DecodeError(HTTPError):
    """Inbound request could not be decoded into the endpoint's type."""

    __slots__ = ()

    def __init__(self, message: str, headers: Mapping[str, str] | None = None) -> None:
        super().__init__(400, message, headers)
