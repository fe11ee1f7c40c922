"""Foundation - building blocks for endpointkit.

Contains: request context, error handling, config.
"""

from __future__ import annotations

from .config import EndpointkitSettings, clear_settings_cache, get_settings
from .context import Context, ContextKey, background, value, with_value
from .errors import DecodeError, ErrorCode, HTTPError, PipelineError, Stage, classify_exception

__all__ = [
    # Context
    "Context", "ContextKey", "background", "value", "with_value",
    # Errors
    "DecodeError", "ErrorCode", "HTTPError", "PipelineError", "Stage", "classify_exception",
    # Config
    "EndpointkitSettings", "get_settings", "clear_settings_cache",
]
