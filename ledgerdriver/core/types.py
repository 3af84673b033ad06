"""
Core Type Definitions for the Ledger Transaction Core

Provides:
- Result/Ok/Err for value-returning validation paths (config, state machine)
- Timestamp for error correlation and transition history
- RetryDisposition, the recovery branch attached to a retriable fault

Exceptions remain the signalling mechanism for transaction outcomes because
user transaction bodies raise; Result is used where a caller is expected to
branch on the outcome rather than unwind.
"""

from __future__ import annotations

import time
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum, auto
from typing import Any, Callable, Generic, Literal, NoReturn, TypeVar, Union

T = TypeVar("T")
E = TypeVar("E")
U = TypeVar("U")


# =============================================================================
# RESULT
# =============================================================================
@dataclass(frozen=True, slots=True)
class Ok(Generic[T]):
    """Outcome that carries a value."""

    value: T

    def is_ok(self) -> Literal[True]:
        return True

    def is_err(self) -> Literal[False]:
        return False

    def unwrap(self) -> T:
        return self.value

    def unwrap_or(self, default: T) -> T:
        return self.value

    def map(self, fn: Callable[[T], U]) -> Ok[U]:
        return Ok(fn(self.value))


@dataclass(frozen=True, slots=True)
class Err(Generic[E]):
    """
    Outcome that carries an error.

    The error is a message from config validation or the state machine.
    An exception error is re-raised by ``unwrap`` as-is.
    """

    error: E

    def is_ok(self) -> Literal[False]:
        return False

    def is_err(self) -> Literal[True]:
        return True

    def unwrap(self) -> NoReturn:
        if isinstance(self.error, BaseException):
            raise self.error
        raise ValueError(f"unwrap() on Err({self.error!r})")

    def unwrap_or(self, default: T) -> T:
        return default

    def map(self, fn: Callable[[Any], U]) -> Err[E]:
        return self


Result = Union[Ok[T], Err[E]]


# =============================================================================
# TIMESTAMP
# =============================================================================
@dataclass(frozen=True, slots=True, order=True)
class Timestamp:
    """Wall-clock instant in nanoseconds since the epoch."""

    nanos: int

    @classmethod
    def now(cls) -> Timestamp:
        return cls(time.time_ns())

    def isoformat(self) -> str:
        """UTC ISO-8601 rendering, microsecond precision."""
        return datetime.fromtimestamp(self.nanos / 1e9, tz=timezone.utc).isoformat()


# =============================================================================
# RETRY DISPOSITION
# =============================================================================
class RetryDisposition(Enum):
    """
    How the retry engine recovers before the next attempt.

    NON_RETRIABLE        → propagate, no further attempts
    SAME_SESSION         → retry on the session that just failed
    NEXT_POOLED_SESSION  → release the session, check out another one
    NEW_SERVER_SESSION   → drop the session, open a fresh one on the server
    """
    NON_RETRIABLE = auto()
    SAME_SESSION = auto()
    NEXT_POOLED_SESSION = auto()
    NEW_SERVER_SESSION = auto()

    @property
    def is_retriable(self) -> bool:
        return self is not RetryDisposition.NON_RETRIABLE

    @property
    def replaces_session(self) -> bool:
        """Whether recovery swaps the session before retrying."""
        return self in (
            RetryDisposition.NEXT_POOLED_SESSION,
            RetryDisposition.NEW_SERVER_SESSION,
        )
