"""
Error Hierarchy for the Ledger Transaction Core

Taxonomy:
- PoolError: checkout failures (PoolClosed is terminal, PoolExhausted is
  transient saturation and is never retried by the pool itself)
- ServiceFault: faults reported by the transport collaborator, keyed by
  ErrorCode so the classifier can match on them exhaustively
- TransactionError: classified outcomes of one transaction attempt, each
  carrying the original fault and a session-liveness verdict
  - RetriableFault: the retry engine recovers according to its disposition
  - TransactionAborted: deliberate abort requested by the transaction body
  - TransactionFailed: non-retriable failure wrapping the original cause
- DigestMismatch: commit digest returned by the ledger does not match
- StateError: illegal use of a transaction or result stream
- CancellationRequested: cooperative cancellation (an asyncio.CancelledError)

Each driver error includes:
- Unique error code for programmatic handling
- Unique error id and timestamp for log correlation
- Optional cause for root cause analysis

Usage:
    try:
        await pool.execute(body)
    except TransactionAborted:
        ...  # the body chose to abort
    except TransactionFailed as e:
        match e.cause:
            case ServiceFault(code=ErrorCode.SERVICE_BAD_REQUEST):
                ...
"""

from __future__ import annotations

import asyncio
import dataclasses
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Optional
from uuid import uuid4

from ledgerdriver.core.types import RetryDisposition, Timestamp


# =============================================================================
# ERROR CODE ENUMERATION
# =============================================================================
class ErrorCode(Enum):
    """
    Unique error codes for programmatic error handling.

    Codes are grouped by subsystem:
    - 1xxx: Session pool errors
    - 2xxx: Transaction outcome errors
    - 3xxx: Ledger service faults (raised by the transport)
    - 6xxx: Reliability errors
    """

    # Session pool errors (1xxx)
    POOL_CLOSED = 1001
    POOL_EXHAUSTED = 1002

    # Transaction errors (2xxx)
    TRANSACTION_RETRIABLE = 2001
    TRANSACTION_ABORTED = 2002
    TRANSACTION_FAILED = 2003
    TRANSACTION_DIGEST_MISMATCH = 2004
    TRANSACTION_ILLEGAL_STATE = 2005

    # Ledger service faults (3xxx)
    SERVICE_OCC_CONFLICT = 3001
    SERVICE_INVALID_SESSION = 3002
    SERVICE_BAD_REQUEST = 3003
    SERVICE_REJECTED = 3004
    SERVICE_UNAVAILABLE = 3005
    SERVICE_INTERNAL_ERROR = 3006

    # Reliability errors (6xxx)
    RELIABILITY_CANCELLED = 6001


# =============================================================================
# BASE ERROR CLASS
# =============================================================================
@dataclass(eq=False)
class LedgerDriverError(Exception):
    """
    Base class for all driver errors.

    Provides common infrastructure for error handling:
    - Unique error ID for log correlation
    - Error code for programmatic handling
    - Timestamp for correlation
    - Cause for root cause analysis
    """

    code: ErrorCode
    message: str
    error_id: str = field(default_factory=lambda: str(uuid4()))
    timestamp: Timestamp = field(default_factory=Timestamp.now)
    cause: Optional[BaseException] = None
    context: dict[str, Any] = field(default_factory=dict)

    def __post_init__(self) -> None:
        super().__init__(self.message)

    def with_context(self, **kwargs: Any) -> LedgerDriverError:
        """Add context to error (returns new instance of the same class)."""
        return dataclasses.replace(self, context={**self.context, **kwargs})

    def to_dict(self) -> dict[str, Any]:
        """Serialize error to dictionary for structured logging."""
        return {
            "error_id": self.error_id,
            "code": self.code.name,
            "code_value": self.code.value,
            "message": self.message,
            "timestamp": self.timestamp.isoformat(),
            "timestamp_nanos": self.timestamp.nanos,
            "cause": repr(self.cause) if self.cause is not None else None,
            "context": self.context,
        }

    def __str__(self) -> str:
        return f"[{self.code.name}] {self.message} (id={self.error_id[:8]})"

    def __repr__(self) -> str:
        return (
            f"{self.__class__.__name__}("
            f"code={self.code.name}, "
            f"message={self.message!r}, "
            f"error_id={self.error_id!r})"
        )


# =============================================================================
# SESSION POOL ERRORS
# =============================================================================
@dataclass(eq=False)
class PoolError(LedgerDriverError):
    """Errors raised while checking a session out of the pool."""

    @classmethod
    def closed(cls) -> PoolClosed:
        """The pool has been disposed; no session may be acquired."""
        return PoolClosed(
            code=ErrorCode.POOL_CLOSED,
            message="Session pool has been disposed",
        )

    @classmethod
    def exhausted(cls, capacity: int, wait_ms: int) -> PoolExhausted:
        """No permit became available within the saturation check."""
        return PoolExhausted(
            code=ErrorCode.POOL_EXHAUSTED,
            message=(
                f"Session pool exhausted: all {capacity} sessions are in use "
                f"(waited {wait_ms}ms for a permit)"
            ),
            context={"capacity": capacity, "wait_ms": wait_ms},
        )


@dataclass(eq=False)
class PoolClosed(PoolError):
    """Terminal: the pool is unusable."""


@dataclass(eq=False)
class PoolExhausted(PoolError):
    """Transient: every permit is checked out."""


# =============================================================================
# LEDGER SERVICE FAULTS (RAISED BY THE TRANSPORT)
# =============================================================================
@dataclass(eq=False)
class ServiceFault(LedgerDriverError):
    """
    Fault reported by the ledger service through the transport collaborator.

    Transports translate their wire-level errors into one of the
    classmethod constructors below; the classifier matches on ``code``.
    """

    status_code: Optional[int] = None

    @classmethod
    def occ_conflict(cls, transaction_id: str, message: str = "") -> ServiceFault:
        """Commit rejected: data read by the transaction has since changed."""
        return cls(
            code=ErrorCode.SERVICE_OCC_CONFLICT,
            message=message or f"Optimistic concurrency conflict on transaction {transaction_id}",
            status_code=400,
            context={"transaction_id": transaction_id},
        )

    @classmethod
    def invalid_session(cls, session_id: str, message: str = "") -> ServiceFault:
        """The server no longer recognises the session."""
        return cls(
            code=ErrorCode.SERVICE_INVALID_SESSION,
            message=message or f"Session {session_id} is no longer valid",
            status_code=400,
            context={"session_id": session_id},
        )

    @classmethod
    def bad_request(cls, reason: str) -> ServiceFault:
        """Malformed request or a request that is invalid in the current state."""
        return cls(
            code=ErrorCode.SERVICE_BAD_REQUEST,
            message=f"Bad request: {reason}",
            status_code=400,
            context={"reason": reason},
        )

    @classmethod
    def from_status(cls, status_code: int, message: str = "") -> ServiceFault:
        """
        Map an HTTP-style status code onto a service fault.

        503 is unavailability, any other 5xx an internal error; 400 is a
        bad request and remaining codes are client rejections.
        """
        if status_code == 503:
            code = ErrorCode.SERVICE_UNAVAILABLE
        elif status_code >= 500:
            code = ErrorCode.SERVICE_INTERNAL_ERROR
        elif status_code == 400:
            code = ErrorCode.SERVICE_BAD_REQUEST
        else:
            code = ErrorCode.SERVICE_REJECTED
        return cls(
            code=code,
            message=message or f"Ledger service returned status {status_code}",
            status_code=status_code,
            context={"status_code": status_code},
        )


# =============================================================================
# TRANSACTION OUTCOMES
# =============================================================================
@dataclass(eq=False)
class TransactionError(LedgerDriverError):
    """
    Classified outcome of one transaction attempt.

    ``session_alive`` is the liveness verdict: whether the session that
    ran the attempt may go back to the idle pool.
    """

    transaction_id: Optional[str] = None
    session_alive: bool = True

    @classmethod
    def retriable(
        cls,
        cause: BaseException,
        disposition: RetryDisposition,
        session_alive: bool,
        transaction_id: Optional[str] = None,
    ) -> RetriableFault:
        return RetriableFault(
            code=ErrorCode.TRANSACTION_RETRIABLE,
            message=f"Transaction attempt failed with a retriable fault: {cause}",
            cause=cause,
            transaction_id=transaction_id,
            session_alive=session_alive,
            disposition=disposition,
            context={"disposition": disposition.name},
        )

    @classmethod
    def aborted(
        cls,
        transaction_id: Optional[str],
        session_alive: bool = True,
        cause: Optional[BaseException] = None,
    ) -> TransactionAborted:
        return TransactionAborted(
            code=ErrorCode.TRANSACTION_ABORTED,
            message=f"Transaction {transaction_id} was aborted by the transaction body",
            cause=cause,
            transaction_id=transaction_id,
            session_alive=session_alive,
        )

    @classmethod
    def failed(
        cls,
        cause: BaseException,
        session_alive: bool,
        transaction_id: Optional[str] = None,
    ) -> TransactionFailed:
        return TransactionFailed(
            code=ErrorCode.TRANSACTION_FAILED,
            message=f"Transaction failed: {cause}",
            cause=cause,
            transaction_id=transaction_id,
            session_alive=session_alive,
        )


@dataclass(eq=False)
class RetriableFault(TransactionError):
    """Transient or conflict fault; the retry engine decides what to do."""

    disposition: RetryDisposition = RetryDisposition.SAME_SESSION


@dataclass(eq=False)
class TransactionAborted(TransactionError):
    """The body requested an abort. Never retried."""


@dataclass(eq=False)
class TransactionFailed(TransactionError):
    """Non-retriable failure wrapping the original cause."""


# =============================================================================
# INTEGRITY AND MISUSE
# =============================================================================
@dataclass(eq=False)
class DigestMismatch(LedgerDriverError):
    """Commit digest returned by the ledger differs from the expected one."""

    @classmethod
    def create(cls, transaction_id: str, expected: bytes, actual: bytes) -> DigestMismatch:
        return cls(
            code=ErrorCode.TRANSACTION_DIGEST_MISMATCH,
            message=f"Commit digest mismatch for transaction {transaction_id}",
            context={
                "transaction_id": transaction_id,
                "expected_hex": expected.hex(),
                "actual_hex": actual.hex(),
            },
        )


@dataclass(eq=False)
class StateError(LedgerDriverError):
    """Operation is not valid in the current transaction or stream state."""

    @classmethod
    def illegal_transition(cls, state: str, trigger: str) -> StateError:
        return cls(
            code=ErrorCode.TRANSACTION_ILLEGAL_STATE,
            message=f"Cannot apply '{trigger}' to a transaction in state {state}",
            context={"state": state, "trigger": trigger},
        )

    @classmethod
    def stream_consumed(cls) -> StateError:
        return cls(
            code=ErrorCode.TRANSACTION_ILLEGAL_STATE,
            message="Result stream can only be iterated once",
        )

    @classmethod
    def session_busy(cls, session_id: str) -> StateError:
        return cls(
            code=ErrorCode.TRANSACTION_ILLEGAL_STATE,
            message=f"Session {session_id} already has a transaction in flight",
            context={"session_id": session_id},
        )


# =============================================================================
# CANCELLATION
# =============================================================================
class CancellationRequested(asyncio.CancelledError):
    """
    Cooperative cancellation through a CancellationToken.

    Subclasses asyncio.CancelledError so it unwinds exactly like task
    cancellation and is not caught by ``except Exception`` handlers.
    """

    code = ErrorCode.RELIABILITY_CANCELLED

    def __init__(self, reason: str = "Cancellation requested") -> None:
        super().__init__(reason)
        self.reason = reason
