"""
Session Module: Pooled Sessions and Transaction Execution

Provides:
- SessionPool: bounded pool with managed, retried transactions
- PooledSession: one checked-out session running a transaction body
- Transaction / TransactionExecutor: open transaction and its body-facing view
- ResultStream: lazy, paged statement results
- TransactionStateMachine: per-attempt lifecycle FSM
- LedgerSession / CommitDigest: protocols for the transport and digest collaborators
"""

from ledgerdriver.session.protocols import (
    CommitDigest,
    CommitTransactionResult,
    DigestFactory,
    ExecuteStatementResult,
    FetchPageResult,
    LedgerSession,
    Page,
    SessionFactory,
    StartTransactionResult,
)
from ledgerdriver.session.state_machine import (
    TransactionState,
    TransactionStateMachine,
    TransactionTransition,
    TransitionEvent,
)
from ledgerdriver.session.transaction import (
    ResultStream,
    Transaction,
    TransactionExecutor,
)
from ledgerdriver.session.pooled import PooledSession
from ledgerdriver.session.pool import PoolStats, SessionPool

__all__ = [
    # Protocols
    "CommitDigest",
    "CommitTransactionResult",
    "DigestFactory",
    "ExecuteStatementResult",
    "FetchPageResult",
    "LedgerSession",
    "Page",
    "SessionFactory",
    "StartTransactionResult",
    # State Machine
    "TransactionState",
    "TransactionStateMachine",
    "TransactionTransition",
    "TransitionEvent",
    # Transaction
    "ResultStream",
    "Transaction",
    "TransactionExecutor",
    # Pool
    "PooledSession",
    "PoolStats",
    "SessionPool",
]
