"""
Fault Classification: Transaction Failure → Retry Disposition

Two steps, both closed over FaultKind:

    classify_fault(fault)          → FaultKind
    decide(kind, abort_succeeded)  → FaultVerdict(disposition, session_alive)

Between the two the pooled session performs the best-effort abort when
``requires_abort(kind)`` says the server may still hold an open transaction.

Decision table:

    Kind             Abort  Disposition                          Liveness
    OCC_CONFLICT     no     SAME_SESSION                         true
    TRANSIENT        yes    SAME_SESSION, NEXT_POOLED_SESSION    abort ok
                            when the abort failed
    INVALID_SESSION  no     NEW_SERVER_SESSION                   false
    CLIENT_ERROR     yes    NON_RETRIABLE                        abort ok
    UNCLASSIFIED     yes    NON_RETRIABLE                        abort ok

Adding a fault kind means extending FaultKind, classify_fault and decide.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum, auto

from ledgerdriver.core.errors import ErrorCode, ServiceFault
from ledgerdriver.core.types import RetryDisposition


class FaultKind(Enum):
    """Closed set of fault shapes the transaction core distinguishes."""
    OCC_CONFLICT = auto()     # Commit-time optimistic concurrency rejection
    TRANSIENT = auto()        # Server overload / internal error
    INVALID_SESSION = auto()  # Server dropped the session
    CLIENT_ERROR = auto()     # Malformed or rejected request
    UNCLASSIFIED = auto()     # Anything else, including the body's own errors


@dataclass(frozen=True, slots=True)
class FaultVerdict:
    """Outcome of classification once the abort result is known."""
    kind: FaultKind
    disposition: RetryDisposition
    session_alive: bool

    @property
    def is_retriable(self) -> bool:
        return self.disposition.is_retriable


def classify_fault(fault: BaseException) -> FaultKind:
    """Map a raw fault onto its FaultKind."""
    match fault:
        case ServiceFault(code=ErrorCode.SERVICE_OCC_CONFLICT):
            return FaultKind.OCC_CONFLICT
        case ServiceFault(code=ErrorCode.SERVICE_INVALID_SESSION):
            return FaultKind.INVALID_SESSION
        case ServiceFault(code=ErrorCode.SERVICE_UNAVAILABLE | ErrorCode.SERVICE_INTERNAL_ERROR):
            return FaultKind.TRANSIENT
        case ServiceFault(code=ErrorCode.SERVICE_BAD_REQUEST | ErrorCode.SERVICE_REJECTED):
            return FaultKind.CLIENT_ERROR
        case _:
            return FaultKind.UNCLASSIFIED


def requires_abort(kind: FaultKind) -> bool:
    """
    Whether a best-effort abort should follow a fault of this kind.

    An OCC conflict has already ended the transaction server-side and an
    invalid session cannot accept an abort.
    """
    return kind not in {FaultKind.OCC_CONFLICT, FaultKind.INVALID_SESSION}


def decide(kind: FaultKind, abort_succeeded: bool = True) -> FaultVerdict:
    """Resolve disposition and liveness for a classified fault."""
    match kind:
        case FaultKind.OCC_CONFLICT:
            return FaultVerdict(kind, RetryDisposition.SAME_SESSION, True)
        case FaultKind.INVALID_SESSION:
            return FaultVerdict(kind, RetryDisposition.NEW_SERVER_SESSION, False)
        case FaultKind.TRANSIENT:
            disposition = (
                RetryDisposition.SAME_SESSION if abort_succeeded
                else RetryDisposition.NEXT_POOLED_SESSION
            )
            return FaultVerdict(kind, disposition, abort_succeeded)
        case FaultKind.CLIENT_ERROR | FaultKind.UNCLASSIFIED:
            return FaultVerdict(kind, RetryDisposition.NON_RETRIABLE, abort_succeeded)
