"""
Ledger Driver Transaction Core

The transactional heart of a ledger database client:
- Session Pool: bounded pool of server sessions with a fail-fast permit check
- Retry Engine: disposition-driven retries with pluggable backoff
- Pooled Session: transaction execution with fault classification and
  session-liveness tracking

The wire transport and the commit digest are collaborators supplied by the
caller through the LedgerSession and CommitDigest protocols.

Usage:
    pool = SessionPool(open_session, PoolConfig(max_concurrent_sessions=10))

    async def read_balance(txn: TransactionExecutor) -> int:
        rows = await txn.execute("SELECT balance FROM Accounts WHERE id = ?", 7)
        return (await rows.to_list())[0]

    balance = await pool.execute(read_balance)
    await pool.dispose()
"""

__version__ = "1.0.0"

# =============================================================================
# PUBLIC API EXPORTS
# =============================================================================
from ledgerdriver.core.types import Result, Ok, Err, RetryDisposition
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

# Reliability exports
from ledgerdriver.reliability import (
    CancellationToken,
    RetryContext,
    RetryHandler,
    RetryPolicy,
    exponential_backoff,
)

# Session exports
from ledgerdriver.session import (
    CommitDigest,
    LedgerSession,
    PooledSession,
    PoolStats,
    ResultStream,
    SessionPool,
    Transaction,
    TransactionExecutor,
)

# Observability exports
from ledgerdriver.observability import log_context, setup_logging

__all__ = [
    "__version__",
    # Types
    "Result",
    "Ok",
    "Err",
    "RetryDisposition",
    # Errors
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
    # Config
    "DriverConfig",
    "PoolConfig",
    "RetryConfig",
    "ObservabilityConfig",
    # Reliability
    "CancellationToken",
    "RetryContext",
    "RetryHandler",
    "RetryPolicy",
    "exponential_backoff",
    # Session
    "CommitDigest",
    "LedgerSession",
    "PooledSession",
    "PoolStats",
    "ResultStream",
    "SessionPool",
    "Transaction",
    "TransactionExecutor",
    # Observability
    "log_context",
    "setup_logging",
]
