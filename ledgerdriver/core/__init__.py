"""
Core module: Type definitions, error hierarchy, and configuration.

This module provides the foundational abstractions for the driver:
- Result monad for value-returning validation
- Error hierarchy covering pool, service and transaction outcomes
- Configuration management with validation
"""

from ledgerdriver.core.types import (
    Result,
    Ok,
    Err,
    Timestamp,
    RetryDisposition,
)
from ledgerdriver.core.errors import (
    ErrorCode,
    LedgerDriverError,
    PoolError,
    PoolClosed,
    PoolExhausted,
    ServiceFault,
    TransactionError,
    RetriableFault,
    TransactionAborted,
    TransactionFailed,
    DigestMismatch,
    StateError,
    CancellationRequested,
)
from ledgerdriver.core.config import (
    DriverConfig,
    PoolConfig,
    RetryConfig,
    ObservabilityConfig,
)

__all__ = [
    "Result",
    "Ok",
    "Err",
    "Timestamp",
    "RetryDisposition",
    "ErrorCode",
    "LedgerDriverError",
    "PoolError",
    "PoolClosed",
    "PoolExhausted",
    "ServiceFault",
    "TransactionError",
    "RetriableFault",
    "TransactionAborted",
    "TransactionFailed",
    "DigestMismatch",
    "StateError",
    "CancellationRequested",
    "DriverConfig",
    "PoolConfig",
    "RetryConfig",
    "ObservabilityConfig",
]
