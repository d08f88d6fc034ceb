# src/a11yscan/cancel.py
from __future__ import annotations

import threading
from enum import Enum
from typing import Callable


class WaitResult(str, Enum):
    OK = "ok"
    CANCELLED = "cancelled"


class CancellationToken:
    """
    Run-scoped cancellation signal.

    Every suspension point of a scan (rate gate admission, call spacing, the network
    call, retry backoff, the inter-batch pause) observes one token. Blocking helpers
    return a WaitResult instead of raising, so callers branch on the value.

    Callbacks registered with `register` fire exactly once, on the thread that calls
    `cancel`; they are used to wake condition waiters and to abort in-flight HTTP calls.
    A child token is cancelled together with its parent but can also be cancelled on
    its own (used for run-level aborts that must not cancel the caller's token).
    """

    def __init__(self, parent: CancellationToken | None = None):
        self._event = threading.Event()
        self._lock = threading.Lock()
        self._callbacks: dict[int, Callable[[], None]] = {}
        self._next_id = 0
        self._unlink_parent: Callable[[], None] | None = None
        if parent is not None:
            self._unlink_parent = parent.register(self.cancel)

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def cancel(self) -> None:
        with self._lock:
            if self._event.is_set():
                return
            self._event.set()
            callbacks = list(self._callbacks.values())
            self._callbacks.clear()
        for cb in callbacks:
            cb()

    def child(self) -> CancellationToken:
        return CancellationToken(parent=self)

    def detach(self) -> None:
        """Stop following the parent token (end of a run)."""
        if self._unlink_parent is not None:
            self._unlink_parent()
            self._unlink_parent = None

    def register(self, callback: Callable[[], None]) -> Callable[[], None]:
        """
        Register a cancel callback; returns a function that unregisters it.
        If the token is already cancelled the callback runs immediately.
        """
        with self._lock:
            if not self._event.is_set():
                cb_id = self._next_id
                self._next_id += 1
                self._callbacks[cb_id] = callback

                def _unregister() -> None:
                    with self._lock:
                        self._callbacks.pop(cb_id, None)

                return _unregister

        callback()
        return lambda: None

    def sleep(self, seconds: float) -> WaitResult:
        if seconds <= 0:
            return WaitResult.CANCELLED if self.cancelled else WaitResult.OK
        if self._event.wait(timeout=seconds):
            return WaitResult.CANCELLED
        return WaitResult.OK
