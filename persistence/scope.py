from __future__ import annotations

import threading
import time
from typing import Callable

from .errors import DeadlineExceeded, OperationCancelled


class Scope:
    """
    Cancellable lifetime shared by a connection and the calls made under it.

    `connect()` hands out a root scope; callers derive per-call scopes with
    `child(timeout=...)` when they want a deadline. Cancelling a scope cancels
    every scope derived from it. Safe to use from several threads.
    """

    def __init__(self, *, deadline: float | None = None, parent: Scope | None = None):
        self._parent = parent
        self._deadline = deadline
        self._event = threading.Event()
        self._lock = threading.Lock()
        self._callbacks: list[Callable[[], None]] = []
        self._unlink: Callable[[], None] | None = None
        if parent is not None:
            self._unlink = parent.on_cancel(self.cancel)

    @property
    def deadline(self) -> float | None:
        """Absolute `time.monotonic()` deadline, the tighter of own and parent's."""
        parent_deadline = self._parent.deadline if self._parent is not None else None
        if self._deadline is None:
            return parent_deadline
        if parent_deadline is None:
            return self._deadline
        return min(self._deadline, parent_deadline)

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def child(self, timeout: float | None = None) -> Scope:
        deadline = None if timeout is None else time.monotonic() + timeout
        return Scope(deadline=deadline, parent=self)

    def cancel(self) -> None:
        with self._lock:
            if self._event.is_set():
                return
            self._event.set()
            callbacks = list(self._callbacks)
            self._callbacks.clear()
            unlink, self._unlink = self._unlink, None
        if unlink is not None:
            unlink()
        for cb in callbacks:
            cb()

    def on_cancel(self, callback: Callable[[], None]) -> Callable[[], None]:
        """
        Register `callback` to run once when the scope is cancelled.

        Runs immediately if the scope is already cancelled. Returns a function
        that unregisters the callback.
        """
        with self._lock:
            if not self._event.is_set():
                self._callbacks.append(callback)

                def _remove() -> None:
                    with self._lock:
                        if callback in self._callbacks:
                            self._callbacks.remove(callback)

                return _remove
        callback()
        return lambda: None

    def remaining(self) -> float | None:
        deadline = self.deadline
        if deadline is None:
            return None
        return deadline - time.monotonic()

    def expired(self) -> bool:
        left = self.remaining()
        return left is not None and left <= 0

    def check(self) -> None:
        if self.cancelled:
            raise OperationCancelled()
        if self.expired():
            raise DeadlineExceeded()

    def close(self) -> None:
        """
        Detach from the parent without cancelling.

        Per-call scopes must be closed once the call is over, otherwise the
        parent keeps a cancel hook for each of them until it is cancelled.
        """
        with self._lock:
            unlink, self._unlink = self._unlink, None
        if unlink is not None:
            unlink()

    def __enter__(self) -> Scope:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()
