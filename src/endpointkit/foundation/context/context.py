"""Immutable, request-scoped context chain.

A context is a persistent singly-linked list of key/value nodes. Extending a
context never touches the parent: ``with_value`` allocates one node and
returns a new handle, so every handle observes the same values forever and
can be shared freely between tasks.

Example:
    >>> REQUEST_ID = ContextKey("request_id")
    >>> ctx = background()
    >>> ctx = with_value(ctx, REQUEST_ID, "abc123")
    >>> ctx.value(REQUEST_ID)
    'abc123'
    >>> background().value(REQUEST_ID) is None
    True
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Hashable


class ContextKey:
    """Unique context key compared by identity.

    Two keys created with the same name are distinct, so packages can
    define their own keys without colliding.

    Example:
        >>> USER = ContextKey("user")
        >>> ctx = with_value(background(), USER, "ada")
        >>> ctx.value(ContextKey("user")) is None
        True
    """

    __slots__ = ("name",)

    def __init__(self, name: str) -> None:
        self.name = name

    def __repr__(self) -> str:
        return f"ContextKey({self.name!r})"


class Context:
    """Base context: the root of every chain. Every lookup is absent."""

    __slots__ = ()

    def value(self, key: Hashable) -> object | None:
        """Nearest value bound to ``key``, or None."""
        return None

    def get(self, key: Hashable, default: object = None) -> object:
        """Like ``value`` but returns ``default`` when the key is absent."""
        node: Context = self
        while isinstance(node, _ValueContext):
            if _same_key(node.key, key):
                return node.val
            node = node.parent
        return default

    def with_value(self, key: Hashable, val: object) -> Context:
        """Return a new context extending this one with ``key -> val``."""
        return with_value(self, key, val)

    def __repr__(self) -> str:
        return "context.Background"


@dataclass(frozen=True, slots=True, repr=False, eq=False)
class _ValueContext(Context):
    """One link in the chain. Holds a single pair and its parent."""

    parent: Context
    key: Hashable
    val: object

    def value(self, key: Hashable) -> object | None:
        node: Context = self
        while isinstance(node, _ValueContext):
            if _same_key(node.key, key):
                return node.val
            node = node.parent
        return None

    def __repr__(self) -> str:
        return f"{self.parent!r}.WithValue({self.key!r}, {self.val!r})"


_BACKGROUND = Context()


def _same_key(bound: Hashable, key: Hashable) -> bool:
    # Strict match: 1 and True are different keys
    return bound is key or (type(bound) is type(key) and bound == key)


def background() -> Context:
    """Return the empty root context."""
    return _BACKGROUND


def with_value(parent: Context, key: Hashable, val: object) -> Context:
    """Extend ``parent`` with ``key -> val`` without mutating it.

    Raises:
        ValueError: If ``key`` is None.
    """
    if key is None:
        raise ValueError("context key must not be None")
    return _ValueContext(parent, key, val)


def value(ctx: Context, key: Hashable) -> object | None:
    """Functional form of ``ctx.value(key)``."""
    return ctx.value(key)
