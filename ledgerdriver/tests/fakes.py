"""
Test doubles: an in-memory ledger session with scripted faults,
a session factory and a deterministic commit digest.
"""

from __future__ import annotations

import asyncio
import hashlib
from typing import Any, Optional, Sequence

from ledgerdriver.core.config import PoolConfig
from ledgerdriver.reliability.retry import RetryPolicy
from ledgerdriver.session.pool import SessionPool
from ledgerdriver.session.pooled import PooledSession
from ledgerdriver.session.protocols import (
    CommitTransactionResult,
    ExecuteStatementResult,
    FetchPageResult,
    Page,
    StartTransactionResult,
)


# =============================================================================
# FAKE TRANSPORT
# =============================================================================
class FakeLedgerSession:
    """
    In-memory LedgerSession.

    Each ``*_faults`` list is consumed one entry per call; an entry that is
    an exception is raised, None lets the call succeed.
    """

    def __init__(
        self,
        session_id: str = "session-1",
        first_page: Optional[Page] = None,
        pages: Optional[dict[str, Page]] = None,
    ) -> None:
        self._session_id = session_id
        self.first_page = first_page or Page(values=(1,))
        self.pages = pages or {}
        self.alive = True

        self.start_faults: list[Optional[BaseException]] = []
        self.execute_faults: list[Optional[BaseException]] = []
        self.commit_faults: list[Optional[BaseException]] = []
        self.abort_faults: list[Optional[BaseException]] = []
        self.end_faults: list[Optional[BaseException]] = []

        # Awaited inside execute_statement / commit_transaction when set; lets tests hold an RPC open
        self.execute_gate: Optional[asyncio.Event] = None
        self.commit_gate: Optional[asyncio.Event] = None
        # Returned instead of echoing the expected digest
        self.commit_digest_override: Optional[bytes] = None

        self.start_calls = 0
        self.execute_calls = 0
        self.fetch_calls = 0
        self.commit_calls = 0
        self.abort_calls = 0
        self.end_calls = 0
        self.statements: list[tuple[str, tuple[Any, ...]]] = []
        self.expected_digests: list[Optional[bytes]] = []
        self._transactions = 0

    @property
    def session_id(self) -> str:
        return self._session_id

    @staticmethod
    def _pop(faults: list[Optional[BaseException]]) -> None:
        if faults:
            fault = faults.pop(0)
            if fault is not None:
                raise fault

    async def start_transaction(self) -> StartTransactionResult:
        self.start_calls += 1
        self._pop(self.start_faults)
        self._transactions += 1
        return StartTransactionResult(f"{self._session_id}-txn-{self._transactions}")

    async def execute_statement(
        self,
        transaction_id: str,
        statement: str,
        parameters: Sequence[Any],
    ) -> ExecuteStatementResult:
        self.execute_calls += 1
        self.statements.append((statement, tuple(parameters)))
        if self.execute_gate is not None:
            await self.execute_gate.wait()
        self._pop(self.execute_faults)
        return ExecuteStatementResult(first_page=self.first_page)

    async def fetch_page(self, page_token: str) -> FetchPageResult:
        self.fetch_calls += 1
        return FetchPageResult(page=self.pages[page_token])

    async def commit_transaction(
        self,
        transaction_id: str,
        expected_digest: Optional[bytes],
    ) -> CommitTransactionResult:
        self.commit_calls += 1
        self.expected_digests.append(expected_digest)
        if self.commit_gate is not None:
            await self.commit_gate.wait()
        self._pop(self.commit_faults)
        digest = self.commit_digest_override or expected_digest
        return CommitTransactionResult(transaction_id, commit_digest=digest)

    async def abort_transaction(self) -> None:
        self.abort_calls += 1
        self._pop(self.abort_faults)

    async def end(self) -> None:
        self.end_calls += 1
        self.alive = False
        self._pop(self.end_faults)

    def is_alive(self) -> bool:
        return self.alive


class FakeSessionFactory:
    """Hands out prepared sessions first, then fresh ones."""

    def __init__(self, *prepared: FakeLedgerSession) -> None:
        self.prepared = list(prepared)
        self.created: list[FakeLedgerSession] = []
        self.fail_with: Optional[BaseException] = None

    async def __call__(self) -> FakeLedgerSession:
        if self.fail_with is not None:
            raise self.fail_with
        if self.prepared:
            session = self.prepared.pop(0)
        else:
            session = FakeLedgerSession(f"session-{len(self.created) + 1}")
        self.created.append(session)
        return session


# =============================================================================
# FAKE DIGEST
# =============================================================================
class FakeDigest:
    """SHA-256 over the transaction id and every executed statement."""

    def __init__(self, transaction_id: str) -> None:
        self._hash = hashlib.sha256(transaction_id.encode())

    def update(self, statement: str, parameters: Sequence[Any]) -> None:
        self._hash.update(statement.encode())
        for parameter in parameters:
            self._hash.update(repr(parameter).encode())

    def value(self) -> bytes:
        return self._hash.digest()

    def verify(self, commit_digest: Optional[bytes]) -> bool:
        return commit_digest == self.value()


# =============================================================================
# HELPERS
# =============================================================================
def no_delay(context: Any) -> float:
    return 0.0


def fast_policy(max_retries: int = 4) -> RetryPolicy:
    """Retry policy without backoff sleeps."""
    return RetryPolicy(max_retries=max_retries, backoff=no_delay)


def make_pool(
    factory: FakeSessionFactory,
    capacity: int = 5,
    permit_wait_ms: int = 1,
    max_retries: int = 4,
    **kwargs: Any,
) -> SessionPool:
    return SessionPool(
        factory,
        PoolConfig(max_concurrent_sessions=capacity, permit_wait_ms=permit_wait_ms),
        retry_policy=fast_policy(max_retries),
        **kwargs,
    )


class ReleaseRecorder:
    """Release callback that records the sessions handed back."""

    def __init__(self) -> None:
        self.released: list[PooledSession] = []

    async def __call__(self, session: PooledSession) -> None:
        self.released.append(session)


def make_pooled(
    session: FakeLedgerSession,
    digest_factory: Any = None,
) -> tuple[PooledSession, ReleaseRecorder]:
    recorder = ReleaseRecorder()
    return PooledSession(session, recorder, digest_factory), recorder


async def select_one(txn: Any) -> list[Any]:
    rows = await txn.execute("SELECT * FROM Accounts")
    return await rows.to_list()

