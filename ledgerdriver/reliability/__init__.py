"""
Reliability module: Retry engine, fault classification, and cancellation.
"""

from ledgerdriver.reliability.cancellation import CancellationToken, run_cancellable
from ledgerdriver.reliability.classifier import (
    FaultKind,
    FaultVerdict,
    classify_fault,
    decide,
    requires_abort,
)
from ledgerdriver.reliability.retry import (
    RetryContext,
    RetryHandler,
    RetryPolicy,
    exponential_backoff,
)

__all__ = [
    "CancellationToken",
    "run_cancellable",
    "FaultKind",
    "FaultVerdict",
    "classify_fault",
    "decide",
    "requires_abort",
    "RetryContext",
    "RetryHandler",
    "RetryPolicy",
    "exponential_backoff",
]
