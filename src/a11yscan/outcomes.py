# src/a11yscan/outcomes.py
from __future__ import annotations

from dataclasses import dataclass
from typing import Union


@dataclass(frozen=True)
class Success:
    text: str


@dataclass(frozen=True)
class RateLimited:
    detail: str = ""


@dataclass(frozen=True)
class Timeout:
    detail: str = ""


@dataclass(frozen=True)
class AuthFailure:
    detail: str = ""


@dataclass(frozen=True)
class TransientFailure:
    detail: str = ""


@dataclass(frozen=True)
class Cancelled:
    pass


CANCELLED = Cancelled()

# What one outbound call can resolve to.
CallOutcome = Union[Success, RateLimited, Timeout, AuthFailure, TransientFailure, Cancelled]


@dataclass(frozen=True)
class Exhausted:
    """All attempts failed with retryable outcomes; `last` is the final failure."""

    last: CallOutcome
    attempts: int


Outcome = Union[CallOutcome, Exhausted]

RETRYABLE = (RateLimited, Timeout, TransientFailure)


def describe(outcome: Outcome) -> str:
    name = type(outcome).__name__
    detail = getattr(outcome, "detail", "")
    if isinstance(outcome, Exhausted):
        return f"{name} after {outcome.attempts} attempts ({describe(outcome.last)})"
    return f"{name}: {detail}" if detail else name
