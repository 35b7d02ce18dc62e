from __future__ import annotations

from threading import Event
from typing import Any

from .errors import PassCancelled


class PassContext:
    """Explicit, immutable per-pass context: keyed values plus a cancellation signal.

    Values are looked up by key identity through the parent chain. A context
    derived with `with_cancel()` is cancelled when it or any ancestor is
    cancelled; cancelling it never affects the ancestors.
    """

    __slots__ = ("_parent", "_key", "_value", "_cancelled")

    _NO_KEY = object()

    def __init__(self, parent: PassContext | None = None, key: Any = _NO_KEY, value: Any = None,
                 cancellable: bool = False) -> None:
        self._parent = parent
        self._key = key
        self._value = value
        self._cancelled = Event() if cancellable or parent is None else None

    def with_value(self, key: Any, value: Any) -> PassContext:
        return PassContext(self, key, value)

    def value(self, key: Any) -> Any:
        ctx: PassContext | None = self
        while ctx is not None:
            if ctx._key is key:
                return ctx._value
            ctx = ctx._parent
        return None

    def with_cancel(self) -> PassContext:
        return PassContext(self, cancellable=True)

    def cancel(self) -> None:
        ctx: PassContext | None = self
        while ctx is not None and ctx._cancelled is None:
            ctx = ctx._parent
        if ctx is not None:
            ctx._cancelled.set()

    @property
    def cancelled(self) -> bool:
        ctx: PassContext | None = self
        while ctx is not None:
            if ctx._cancelled is not None and ctx._cancelled.is_set():
                return True
            ctx = ctx._parent
        return False

    def raise_if_cancelled(self) -> None:
        if self.cancelled:
            raise PassCancelled("reconciliation pass cancelled")


def background() -> PassContext:
    return PassContext()
