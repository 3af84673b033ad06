"""
Pooled Session: One Ledger Session Checked Out of the Pool

Runs a transaction body end to end (start, body, commit) and turns every
failure into a classified TransactionError carrying a liveness verdict:

    fault ──► classify_fault ──► [best-effort abort] ──► decide
                                                          │
            RetriableFault(disposition) ◄── retriable ────┤
            TransactionFailed(cause)    ◄── otherwise ────┘

TransactionAborted and errors that are already classified pass through
unchanged. A session whose verdict is not alive stays dead: release()
drops it instead of returning it to the idle queue.
"""

from __future__ import annotations

import asyncio
import inspect
import logging
from typing import Awaitable, Callable, Optional, TypeVar, Union

from ledgerdriver.core.errors import StateError, TransactionError
from ledgerdriver.core.types import Err, Ok, Result
from ledgerdriver.observability.logging import log_context
from ledgerdriver.reliability.cancellation import CancellationToken, run_cancellable
from ledgerdriver.reliability.classifier import classify_fault, decide, requires_abort
from ledgerdriver.session.protocols import DigestFactory, LedgerSession
from ledgerdriver.session.state_machine import TransactionState, TransactionStateMachine
from ledgerdriver.session.transaction import Transaction, TransactionExecutor

logger = logging.getLogger(__name__)

T = TypeVar("T")

TransactionBody = Callable[[TransactionExecutor], Union[Awaitable[T], T]]
ReleaseCallback = Callable[["PooledSession"], Awaitable[None]]

# States in which a cancelled attempt may leave a transaction open server-side
_INTERRUPTIBLE = frozenset({
    TransactionState.STARTING,
    TransactionState.OPEN,
    TransactionState.COMMITTING,
    TransactionState.ABORTING,
})


class PooledSession:
    """
    A ledger session on loan from a SessionPool.

    Usage:
        session = await pool.get_session()
        try:
            balance = await session.execute(read_balance)
        finally:
            await session.release()

    At most one transaction is in flight per session. release() is
    idempotent: only the first call after checkout reaches the pool.
    """

    __slots__ = (
        "_session",
        "_release_callback",
        "_digest_factory",
        "_alive",
        "_checked_out",
        "_busy",
    )

    def __init__(
        self,
        session: LedgerSession,
        release_callback: ReleaseCallback,
        digest_factory: Optional[DigestFactory] = None,
    ) -> None:
        self._session = session
        self._release_callback = release_callback
        self._digest_factory = digest_factory
        self._alive = True
        self._checked_out = False
        self._busy = False

    @property
    def session_id(self) -> str:
        return self._session.session_id

    @property
    def is_alive(self) -> bool:
        """False once any attempt judged the session dead, or the transport says so."""
        return self._alive and self._session.is_alive()

    @property
    def checked_out(self) -> bool:
        return self._checked_out

    # =========================================================================
    # TRANSACTIONS
    # =========================================================================
    async def execute(self, body: TransactionBody[T]) -> T:
        """
        Run ``body`` inside one transaction and commit it.

        ``body`` may be a coroutine function or a plain function; it
        receives a TransactionExecutor.

        Raises:
            RetriableFault: transient, conflict or invalid-session fault
            TransactionAborted: the body called executor.abort()
            TransactionFailed: any other fault, wrapping the original
        """
        if self._busy:
            raise StateError.session_busy(self.session_id)
        self._busy = True
        try:
            with log_context(session_id=self.session_id):
                return await self._execute(body)
        finally:
            self._busy = False

    async def _execute(self, body: TransactionBody[T]) -> T:
        fsm = TransactionStateMachine()
        executor: Optional[TransactionExecutor] = None
        try:
            transaction = await self._start(fsm)
            executor = TransactionExecutor(transaction)
            with log_context(transaction_id=transaction.transaction_id):
                value = body(executor)
                if inspect.isawaitable(value):
                    value = await value
                if executor.abort_requested:
                    # The body swallowed TransactionAborted; never commit.
                    raise TransactionError.aborted(
                        transaction.transaction_id,
                        session_alive=fsm.state == TransactionState.ABORTED,
                    )
                await transaction.commit()
            return value
        except TransactionError as exc:
            if not exc.session_alive:
                self._alive = False
            raise
        except asyncio.CancelledError:
            await self._abandon(fsm)
            raise
        except Exception as exc:
            if executor is not None and executor.abort_requested:
                raise self._aborted_after(exc, fsm) from exc
            raise await self._classify(exc, fsm) from exc

    async def start_transaction(self, cancel: Optional[CancellationToken] = None) -> Transaction:
        """
        Open a transaction for manual use.

        The caller owns commit/abort; a failed start is classified exactly
        like a failure inside execute().
        """
        fsm = TransactionStateMachine()
        try:
            return await run_cancellable(self._start(fsm), cancel)
        except asyncio.CancelledError:
            await self._abandon(fsm)
            raise
        except Exception as exc:
            raise await self._classify(exc, fsm) from exc

    async def _start(self, fsm: TransactionStateMachine) -> Transaction:
        fsm.require("START")
        result = await self._session.start_transaction()
        fsm.bind(result.transaction_id)
        fsm.require("OPENED")
        digest = (
            self._digest_factory(result.transaction_id)
            if self._digest_factory is not None else None
        )
        logger.debug(f"Started transaction {result.transaction_id} on session {self.session_id}")
        return Transaction(self._session, fsm, digest)

    async def _classify(self, exc: Exception, fsm: TransactionStateMachine) -> TransactionError:
        """Abort if needed, record liveness, and build the classified error."""
        fsm.transition("FAIL")
        kind = classify_fault(exc)

        abort_succeeded = True
        if requires_abort(kind):
            abort_succeeded = (await self._try_abort()).is_ok()

        verdict = decide(kind, abort_succeeded)
        if not verdict.session_alive:
            self._alive = False

        logger.info(
            f"Transaction attempt on session {self.session_id} failed: {exc!r} "
            f"({kind.name} → {verdict.disposition.name})",
            extra={"transaction_id": fsm.transaction_id},
        )

        if verdict.is_retriable:
            return TransactionError.retriable(
                exc, verdict.disposition, verdict.session_alive, fsm.transaction_id,
            )
        return TransactionError.failed(exc, verdict.session_alive, fsm.transaction_id)

    async def _abandon(self, fsm: TransactionStateMachine) -> None:
        """Fail an attempt interrupted by cancellation, aborting anything the server may hold open."""
        if fsm.state in _INTERRUPTIBLE:
            fsm.transition("FAIL")
            await self._try_abort()

    def _aborted_after(self, exc: Exception, fsm: TransactionStateMachine) -> TransactionError:
        """The body requested an abort and then failed; the abort stands."""
        alive = fsm.state == TransactionState.ABORTED
        if not alive:
            self._alive = False
        logger.info(
            f"Transaction on session {self.session_id} failed after abort was requested: {exc!r}",
            extra={"transaction_id": fsm.transaction_id},
        )
        return TransactionError.aborted(fsm.transaction_id, session_alive=alive, cause=exc)

    async def _try_abort(self) -> Result[None, Exception]:
        """Best-effort abort; a failure marks the session dead."""
        try:
            await self._session.abort_transaction()
        except Exception as exc:
            logger.warning(f"Ignored error aborting transaction on session {self.session_id}: {exc!r}")
            self._alive = False
            return Err(exc)
        return Ok(None)

    # =========================================================================
    # LIFECYCLE
    # =========================================================================
    async def release(self) -> None:
        """Return the session to its pool. Extra calls are no-ops."""
        if not self._checked_out:
            return
        self._checked_out = False
        await self._release_callback(self)

    async def close(self) -> None:
        """End the server-side session; failures are logged, not raised."""
        self._alive = False
        try:
            await self._session.end()
        except Exception as exc:
            logger.warning(f"Ignored error ending session {self.session_id}: {exc!r}")

    def _mark_checked_out(self) -> None:
        self._checked_out = True

    def _detach(self) -> None:
        """Forget the checkout without notifying the pool."""
        self._checked_out = False

    def __repr__(self) -> str:
        return (
            f"PooledSession(session_id={self.session_id!r}, "
            f"alive={self._alive}, checked_out={self._checked_out})"
        )
