"""Immutable request-scoped context chain."""

from .context import Context, ContextKey, background, value, with_value

__all__ = ["Context", "ContextKey", "background", "value", "with_value"]
