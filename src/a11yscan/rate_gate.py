# src/a11yscan/rate_gate.py
from __future__ import annotations

import itertools
import logging
import threading
import time
from dataclasses import dataclass
from typing import Callable

from a11yscan.cancel import CancellationToken
from a11yscan.outcomes import CANCELLED, Cancelled

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Permit:
    id: int
    started_at: float


class RateGate:
    """
    Admission control for outbound model calls, shared by every file pipeline.

    Two limits, checked under one condition variable:
      - at most `max_concurrent` calls in flight
      - call starts spaced by at least `min_interval_s`

    `acquire` returns a Permit or CANCELLED (never raises for cancellation).
    Every Permit must be handed back to `release` exactly once.
    """

    def __init__(
            self,
            max_concurrent: int = 3,
            min_interval_s: float = 1.5,
            *,
            clock: Callable[[], float] = time.monotonic,
    ):
        if max_concurrent < 1:
            raise ValueError("max_concurrent must be >= 1")
        if min_interval_s < 0:
            raise ValueError("min_interval_s must be >= 0")
        self.max_concurrent = max_concurrent
        self.min_interval_s = float(min_interval_s)
        self._clock = clock
        self._cond = threading.Condition()
        self._in_flight = 0
        self._last_started_at: float | None = None
        self._outstanding: set[int] = set()
        self._ids = itertools.count(1)

    @property
    def in_flight(self) -> int:
        with self._cond:
            return self._in_flight

    @property
    def last_call_started_at(self) -> float | None:
        with self._cond:
            return self._last_started_at

    def _wake_all(self) -> None:
        with self._cond:
            self._cond.notify_all()

    def acquire(self, cancel: CancellationToken) -> Permit | Cancelled:
        unregister = cancel.register(self._wake_all)
        try:
            with self._cond:
                while self._in_flight >= self.max_concurrent:
                    if cancel.cancelled:
                        return CANCELLED
                    self._cond.wait()
                if cancel.cancelled:
                    return CANCELLED

                # slot reserved; now honor the spacing between call starts
                self._in_flight += 1
                while True:
                    if cancel.cancelled:
                        self._in_flight -= 1
                        self._cond.notify()
                        return CANCELLED
                    now = self._clock()
                    if self._last_started_at is None:
                        break
                    remaining = self.min_interval_s - (now - self._last_started_at)
                    if remaining <= 0:
                        break
                    logger.debug("Rate gate: waiting %.0fms before next call", remaining * 1000)
                    self._cond.wait(timeout=remaining)

                self._last_started_at = now
                permit = Permit(id=next(self._ids), started_at=now)
                self._outstanding.add(permit.id)
                return permit
        finally:
            unregister()

    def release(self, permit: Permit) -> None:
        with self._cond:
            if permit.id not in self._outstanding:
                raise ValueError(f"Permit {permit.id} was already released or never granted")
            self._outstanding.discard(permit.id)
            self._in_flight -= 1
            # spacing waiters sleep on the same condition; wake them all so the
            # capacity waiter is not starved behind a timed spacing wait
            self._cond.notify_all()
