"""
Transaction Handles: Transaction, TransactionExecutor, ResultStream

A Transaction wraps one open server-side transaction on a LedgerSession and
drives its TransactionStateMachine. The transaction body never sees it
directly; it receives a TransactionExecutor, which exposes only statement
execution and a deliberate abort.

Statement results come back as a ResultStream: a lazy async iterator that
fetches continuation pages on demand and may be iterated once.
"""

from __future__ import annotations

import logging
from typing import Any, AsyncIterator, NoReturn, Optional

from ledgerdriver.core.errors import DigestMismatch, StateError, TransactionError
from ledgerdriver.session.protocols import (
    CommitDigest,
    CommitTransactionResult,
    LedgerSession,
    Page,
)
from ledgerdriver.session.state_machine import TransactionState, TransactionStateMachine

logger = logging.getLogger(__name__)


# =============================================================================
# RESULT STREAM
# =============================================================================
class ResultStream:
    """
    Lazy, finite, non-restartable sequence of statement result values.

    Usage:
        stream = await executor.execute("SELECT * FROM Accounts")
        async for row in stream:
            ...

    The first page arrives with the statement result; each further page is
    fetched only when iteration reaches the end of the previous one, and
    only while the owning transaction is still open.
    """

    __slots__ = ("_transaction", "_first_page", "_consumed", "_pages_fetched")

    def __init__(self, transaction: Transaction, first_page: Page) -> None:
        self._transaction = transaction
        self._first_page: Optional[Page] = first_page
        self._consumed = False
        self._pages_fetched = 0

    def __aiter__(self) -> AsyncIterator[Any]:
        if self._consumed:
            raise StateError.stream_consumed()
        self._consumed = True
        return self._iterate()

    async def _iterate(self) -> AsyncIterator[Any]:
        page, self._first_page = self._first_page, None
        while page is not None:
            for value in page.values:
                yield value
            if page.next_page_token is None:
                return
            page = await self._transaction._fetch_page(page.next_page_token)
            self._pages_fetched += 1

    async def to_list(self) -> list[Any]:
        """Drain the stream into a list."""
        return [value async for value in self]

    @property
    def consumed(self) -> bool:
        return self._consumed

    @property
    def pages_fetched(self) -> int:
        """Continuation pages fetched so far (the first page is not counted)."""
        return self._pages_fetched


# =============================================================================
# TRANSACTION
# =============================================================================
class Transaction:
    """
    One open transaction on a ledger session.

    Obtained from PooledSession.start_transaction() in manual mode; the
    managed path wraps it in a TransactionExecutor and commits for you.
    """

    __slots__ = ("_session", "_fsm", "_digest")

    def __init__(
        self,
        session: LedgerSession,
        fsm: TransactionStateMachine,
        digest: Optional[CommitDigest] = None,
    ) -> None:
        self._session = session
        self._fsm = fsm
        self._digest = digest

    @property
    def transaction_id(self) -> str:
        return self._fsm.transaction_id or ""

    @property
    def state(self) -> TransactionState:
        return self._fsm.state

    async def execute(self, statement: str, *parameters: Any) -> ResultStream:
        """Execute a statement inside this transaction."""
        if not self._fsm.state.is_open:
            raise StateError.illegal_transition(self._fsm.state.name, "EXECUTE")

        result = await self._session.execute_statement(
            self.transaction_id, statement, parameters,
        )
        if self._digest is not None:
            self._digest.update(statement, parameters)
        return ResultStream(self, result.first_page)

    async def commit(self) -> CommitTransactionResult:
        """
        Commit, sending the expected digest and verifying the returned one.

        Raises:
            DigestMismatch: the ledger's commit digest differs
            StateError: the transaction is not open
        """
        self._fsm.require("COMMIT")
        expected = self._digest.value() if self._digest is not None else None

        try:
            result = await self._session.commit_transaction(self.transaction_id, expected)
        except Exception:
            self._fsm.transition("FAIL")
            raise

        if self._digest is not None and not self._digest.verify(result.commit_digest):
            self._fsm.require("FAIL")
            raise DigestMismatch.create(
                self.transaction_id, expected or b"", result.commit_digest or b"",
            )

        self._fsm.require("COMMITTED")
        logger.debug(f"Committed transaction {self.transaction_id}")
        return result

    async def abort(self) -> None:
        """Abort the open transaction server-side."""
        self._fsm.require("ABORT")
        try:
            await self._session.abort_transaction()
        except Exception:
            self._fsm.transition("FAIL")
            raise
        self._fsm.require("ABORTED")
        logger.debug(f"Aborted transaction {self.transaction_id}")

    async def _fetch_page(self, page_token: str) -> Page:
        if not self._fsm.state.is_open:
            raise StateError.illegal_transition(self._fsm.state.name, "FETCH_PAGE")
        result = await self._session.fetch_page(page_token)
        return result.page


# =============================================================================
# TRANSACTION EXECUTOR
# =============================================================================
class TransactionExecutor:
    """
    Restricted view of a Transaction handed to the transaction body.

    Usage:
        async def transfer(txn: TransactionExecutor) -> int:
            rows = await txn.execute("SELECT balance FROM Accounts WHERE id = ?", 7)
            balance = (await rows.to_list())[0]
            if balance < 100:
                await txn.abort()
            await txn.execute("UPDATE Accounts SET balance = ? WHERE id = ?", balance - 100, 7)
            return balance - 100
    """

    __slots__ = ("_transaction", "_abort_requested")

    def __init__(self, transaction: Transaction) -> None:
        self._transaction = transaction
        self._abort_requested = False

    @property
    def transaction_id(self) -> str:
        return self._transaction.transaction_id

    @property
    def abort_requested(self) -> bool:
        return self._abort_requested

    async def execute(self, statement: str, *parameters: Any) -> ResultStream:
        return await self._transaction.execute(statement, *parameters)

    async def abort(self) -> NoReturn:
        """
        Abort the transaction and unwind the body.

        Always raises TransactionAborted. If the abort call itself fails the
        error carries ``session_alive=False`` and the failure as its cause.
        A repeated call on an aborted transaction sends nothing.
        """
        self._abort_requested = True
        if self._transaction.state is TransactionState.ABORTED:
            raise TransactionError.aborted(self.transaction_id)
        try:
            await self._transaction.abort()
        except Exception as exc:
            logger.warning(f"Abort of transaction {self.transaction_id} failed: {exc!r}")
            raise TransactionError.aborted(
                self.transaction_id, session_alive=False, cause=exc,
            ) from exc
        raise TransactionError.aborted(self.transaction_id)
