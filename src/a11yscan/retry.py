# src/a11yscan/retry.py
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Protocol

from a11yscan.cancel import CancellationToken, WaitResult
from a11yscan.job import ScanTask
from a11yscan.outcomes import (
    CANCELLED,
    RETRYABLE,
    AuthFailure,
    CallOutcome,
    Cancelled,
    Exhausted,
    Outcome,
    RateLimited,
    Success,
    describe,
)
from a11yscan.prompt import PromptPayload
from a11yscan.rate_gate import RateGate

logger = logging.getLogger(__name__)


class SendFn(Protocol):
    def __call__(
            self,
            payload: PromptPayload,
            api_key: str,
            timeout: float | None = None,
            cancel: CancellationToken | None = None,
    ) -> CallOutcome: ...


class RetryState(str, Enum):
    IDLE = "idle"
    ATTEMPTING = "attempting"
    SUCCEEDED = "succeeded"
    EXHAUSTED = "exhausted"
    CANCELLED = "cancelled"
    FATAL = "fatal"


@dataclass(frozen=True)
class CallAttempt:
    task: ScanTask
    attempt_number: int
    started_at: float
    outcome: CallOutcome | None = None


@dataclass
class RetryResult:
    outcome: Outcome
    state: RetryState
    attempts: list[CallAttempt] = field(default_factory=list)
    transitions: list[RetryState] = field(default_factory=list)

    @property
    def calls_made(self) -> int:
        return len(self.attempts)


@dataclass(frozen=True)
class BackoffPolicy:
    rate_limit_s: float = 10.0
    transient_s: float = 5.0

    def delay_for(self, outcome: CallOutcome, attempt_number: int) -> float:
        base = self.rate_limit_s if isinstance(outcome, RateLimited) else self.transient_s
        return base * attempt_number


class RetryController:
    """
    Bounded retries around one send function, per task:

        idle -> attempting -> succeeded | exhausted | cancelled | fatal

    Every attempt goes through the shared RateGate and releases its permit on every
    exit path. Backoff sleeps happen outside the gate and are interrupted by the token.
    """

    def __init__(
            self,
            send: SendFn,
            gate: RateGate,
            *,
            max_attempts: int = 3,
            backoff: BackoffPolicy | None = None,
            call_timeout_s: float | None = None,
    ):
        if max_attempts < 1:
            raise ValueError("max_attempts must be >= 1")
        self.send = send
        self.gate = gate
        self.max_attempts = max_attempts
        self.backoff = backoff or BackoffPolicy()
        self.call_timeout_s = call_timeout_s

    def _attempt(
            self,
            task: ScanTask,
            payload: PromptPayload,
            api_key: str,
            attempt_number: int,
            cancel: CancellationToken,
    ) -> tuple[CallAttempt | None, CallOutcome]:
        admitted = self.gate.acquire(cancel)
        if isinstance(admitted, Cancelled):
            return None, CANCELLED
        try:
            outcome = self.send(payload, api_key, self.call_timeout_s, cancel)
        finally:
            self.gate.release(admitted)
        return CallAttempt(task, attempt_number, admitted.started_at, outcome), outcome

    def call(
            self,
            task: ScanTask,
            payload: PromptPayload,
            api_key: str,
            cancel: CancellationToken,
            max_attempts: int | None = None,
    ) -> RetryResult:
        limit = self.max_attempts if max_attempts is None else max_attempts
        if limit < 1:
            raise ValueError("max_attempts must be >= 1")
        attempts: list[CallAttempt] = []
        transitions = [RetryState.IDLE]
        last: CallOutcome | None = None

        def _finish(outcome: Outcome, state: RetryState) -> RetryResult:
            transitions.append(state)
            return RetryResult(outcome, state, attempts, transitions)

        for attempt_number in range(1, limit + 1):
            transitions.append(RetryState.ATTEMPTING)
            attempt, outcome = self._attempt(task, payload, api_key, attempt_number, cancel)
            if attempt is not None:
                attempts.append(attempt)
            last = outcome

            if isinstance(outcome, Success):
                return _finish(outcome, RetryState.SUCCEEDED)
            if isinstance(outcome, Cancelled):
                logger.info("Scan cancelled during model call for %s", task.file_path)
                return _finish(outcome, RetryState.CANCELLED)
            if isinstance(outcome, AuthFailure):
                logger.error("Authentication failed for %s. Please check your API key.", task.file_path)
                return _finish(outcome, RetryState.FATAL)

            if not isinstance(outcome, RETRYABLE):
                # unknown outcome kinds are not retried
                break

            logger.warning(
                "Model call failed for %s (attempt %d/%d): %s",
                task.file_path,
                attempt_number,
                limit,
                describe(outcome),
            )
            if attempt_number < limit:
                delay = self.backoff.delay_for(outcome, attempt_number)
                logger.warning("Retrying %s in %.0fs", task.file_path, delay)
                if cancel.sleep(delay) is WaitResult.CANCELLED:
                    return _finish(CANCELLED, RetryState.CANCELLED)

        assert last is not None
        exhausted = Exhausted(last=last, attempts=len(attempts))
        logger.warning("Giving up on %s: %s", task.file_path, describe(exhausted))
        return _finish(exhausted, RetryState.EXHAUSTED)
