"""Thread ownership checks for state that must stay on one thread."""

from __future__ import annotations

import threading
from typing import Optional

from .exceptions import ThreadAffinityError

__all__ = ["ThreadAffinity", "is_main_thread"]


def is_main_thread() -> bool:
    return threading.current_thread() is threading.main_thread()


class ThreadAffinity:
    """Remember an owning thread and reject calls made from any other.

    Lua runtimes are not reentrant and must never be observed from a thread
    other than the one that created them, so every entry point into a
    comparer (and the engine feed) starts with :meth:`check`.
    """

    __slots__ = ("_owner",)

    def __init__(self, owner: Optional[threading.Thread] = None) -> None:
        self._owner = owner if owner is not None else threading.current_thread()

    @property
    def owner(self) -> threading.Thread:
        return self._owner

    def is_owner(self) -> bool:
        return threading.current_thread() is self._owner

    def check(self, action: str) -> None:
        current = threading.current_thread()
        if current is not self._owner:
            raise ThreadAffinityError(
                f"{action} can only be called on thread {self._owner.name!r} "
                f"(called from {current.name!r})"
            )
