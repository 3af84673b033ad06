"""
Session Protocol Definitions: Boundary with the Transport Collaborator

Structural subtyping protocols (PEP 544) for the pieces this core consumes
but does not implement:
- LedgerSession: one server-side session, as exposed by the wire client
- CommitDigest: expected-digest computation and commit verification

Transport implementations raise ServiceFault (see ledgerdriver.core.errors)
for every fault reported by the ledger service.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Optional, Protocol, Sequence, runtime_checkable


# =============================================================================
# TRANSPORT RESULTS
# =============================================================================
@dataclass(frozen=True, slots=True)
class StartTransactionResult:
    transaction_id: str


@dataclass(frozen=True, slots=True)
class Page:
    """
    One page of statement results.

    ``next_page_token`` is None on the last page.
    """
    values: tuple[Any, ...] = ()
    next_page_token: Optional[str] = None


@dataclass(frozen=True, slots=True)
class ExecuteStatementResult:
    first_page: Page = field(default_factory=Page)


@dataclass(frozen=True, slots=True)
class FetchPageResult:
    page: Page


@dataclass(frozen=True, slots=True)
class CommitTransactionResult:
    transaction_id: str
    commit_digest: Optional[bytes] = None


# =============================================================================
# LEDGER SESSION
# =============================================================================
@runtime_checkable
class LedgerSession(Protocol):
    """
    One server-side ledger session.

    A session permits one open transaction at a time and is never shared
    between concurrent callers.
    """

    @property
    def session_id(self) -> str:
        ...

    async def start_transaction(self) -> StartTransactionResult:
        ...

    async def execute_statement(
        self,
        transaction_id: str,
        statement: str,
        parameters: Sequence[Any],
    ) -> ExecuteStatementResult:
        ...

    async def fetch_page(self, page_token: str) -> FetchPageResult:
        ...

    async def commit_transaction(
        self,
        transaction_id: str,
        expected_digest: Optional[bytes],
    ) -> CommitTransactionResult:
        ...

    async def abort_transaction(self) -> None:
        ...

    async def end(self) -> None:
        ...

    def is_alive(self) -> bool:
        ...


SessionFactory = Callable[[], Awaitable[LedgerSession]]


# =============================================================================
# COMMIT DIGEST
# =============================================================================
@runtime_checkable
class CommitDigest(Protocol):
    """
    Running digest of one transaction.

    Seeded with the transaction id, folded with every executed statement,
    sent on commit and compared with the digest the ledger returns.
    """

    def update(self, statement: str, parameters: Sequence[Any]) -> None:
        ...

    def value(self) -> bytes:
        ...

    def verify(self, commit_digest: Optional[bytes]) -> bool:
        ...


DigestFactory = Callable[[str], CommitDigest]
