"""
Session Pool: Bounded Pool of Ledger Sessions with Managed Transactions

Architecture:
┌──────────────────────────────────────────────────────────────┐
│                        SessionPool                           │
│  permits: BoundedSemaphore(N)     idle: Queue(maxsize=N)     │
│                                                              │
│  execute(body) ─► get_session ─► RetryHandler ─► release     │
│                        │              │                      │
│                        │     new_session / next_session      │
│                        ▼              ▼                      │
│               idle.get_nowait() or session_factory()         │
└──────────────────────────────────────────────────────────────┘

Guarantees:
- checked out + idle ≤ N; a permit is held by every checked-out session
- a session is idle, checked out or disposed, never two at once
- a session judged dead is never re-enqueued; its permit is still freed
- queue insertion and permit release happen with no await in between

The permit wait is a fail-fast saturation check (1 ms by default). When no
permit frees up in time the caller gets PoolExhausted; the pool never
queues callers indefinitely.
"""

from __future__ import annotations

import asyncio
import logging
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import AsyncIterator, Optional, TypeVar

from ledgerdriver.core.config import DriverConfig, PoolConfig
from ledgerdriver.core.errors import PoolError
from ledgerdriver.reliability.cancellation import CancellationToken, run_cancellable
from ledgerdriver.reliability.retry import RetryHandler, RetryNotify, RetryPolicy
from ledgerdriver.session.pooled import PooledSession, TransactionBody
from ledgerdriver.session.protocols import DigestFactory, SessionFactory

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass(frozen=True, slots=True)
class PoolStats:
    """Point-in-time pool snapshot."""
    capacity: int
    available_permits: int
    idle_sessions: int
    sessions_created: int
    sessions_discarded: int
    closed: bool

    @property
    def checked_out(self) -> int:
        return self.capacity - self.available_permits


class SessionPool:
    """
    Bounded pool of ledger sessions.

    Usage:
        async with SessionPool(open_session, PoolConfig(max_concurrent_sessions=10)) as pool:
            total = await pool.execute(sum_balances)

            async with pool.session() as session:
                txn = await session.start_transaction()
                await txn.execute("DELETE FROM Audit")
                await txn.commit()
    """

    __slots__ = (
        "_session_factory",
        "_config",
        "_retry_policy",
        "_retry_handler",
        "_digest_factory",
        "_idle",
        "_permits",
        "_checked_out",
        "_closed",
        "_sessions_created",
        "_sessions_discarded",
    )

    def __init__(
        self,
        session_factory: SessionFactory,
        config: Optional[PoolConfig] = None,
        retry_policy: Optional[RetryPolicy] = None,
        retry_handler: Optional[RetryHandler] = None,
        digest_factory: Optional[DigestFactory] = None,
    ) -> None:
        self._session_factory = session_factory
        self._config = config or PoolConfig()
        self._retry_policy = retry_policy or RetryPolicy.default()
        self._retry_handler = retry_handler or RetryHandler()
        self._digest_factory = digest_factory

        capacity = self._config.max_concurrent_sessions
        self._idle: asyncio.Queue[PooledSession] = asyncio.Queue(maxsize=capacity)
        self._permits = asyncio.BoundedSemaphore(capacity)
        self._checked_out = 0
        self._closed = False
        self._sessions_created = 0
        self._sessions_discarded = 0

    @classmethod
    def from_config(
        cls,
        session_factory: SessionFactory,
        config: DriverConfig,
        digest_factory: Optional[DigestFactory] = None,
    ) -> SessionPool:
        return cls(
            session_factory,
            config=config.pool,
            retry_policy=RetryPolicy.from_config(config.retry),
            digest_factory=digest_factory,
        )

    # =========================================================================
    # PROPERTIES
    # =========================================================================
    @property
    def capacity(self) -> int:
        return self._config.max_concurrent_sessions

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def available_permits(self) -> int:
        return self.capacity - self._checked_out

    @property
    def stats(self) -> PoolStats:
        return PoolStats(
            capacity=self.capacity,
            available_permits=self.available_permits,
            idle_sessions=self._idle.qsize(),
            sessions_created=self._sessions_created,
            sessions_discarded=self._sessions_discarded,
            closed=self._closed,
        )

    # =========================================================================
    # MANAGED TRANSACTIONS
    # =========================================================================
    async def execute(
        self,
        body: TransactionBody[T],
        retry_policy: Optional[RetryPolicy] = None,
        retry_notify: Optional[RetryNotify] = None,
        cancel: Optional[CancellationToken] = None,
    ) -> T:
        """
        Run ``body`` in a committed transaction, retrying retriable faults.

        Raises:
            PoolClosed: the pool has been disposed
            PoolExhausted: no permit within the saturation check
            TransactionAborted: the body aborted
            TransactionFailed: non-retriable fault
            CancellationRequested: ``cancel`` fired
            Exception: original cause of the last fault once retries run out
        """
        session: Optional[PooledSession] = await self.get_session(cancel)

        async def new_session() -> None:
            nonlocal session
            fresh = await self._start_new_session()
            fresh._mark_checked_out()
            stale, session = session, fresh
            stale._detach()
            self._sessions_discarded += 1
            logger.info(
                f"Replaced session {stale.session_id} with new session {fresh.session_id}"
            )

        async def next_session() -> None:
            nonlocal session
            stale, session = session, None
            await stale.release()
            session = await self.get_session(cancel)

        try:
            return await self._retry_handler.retriable_execute(
                lambda: session.execute(body),
                retry_policy or self._retry_policy,
                new_session,
                next_session,
                retry_notify=retry_notify,
                cancel=cancel,
            )
        finally:
            if session is not None:
                await session.release()

    @asynccontextmanager
    async def session(
        self,
        cancel: Optional[CancellationToken] = None,
    ) -> AsyncIterator[PooledSession]:
        """Check out a session for manual transaction control; always released."""
        pooled = await self.get_session(cancel)
        try:
            yield pooled
        finally:
            await pooled.release()

    # =========================================================================
    # CHECKOUT / RELEASE
    # =========================================================================
    async def get_session(self, cancel: Optional[CancellationToken] = None) -> PooledSession:
        """
        Check a session out of the pool.

        Reuses an idle session when one is available, otherwise creates one.
        The caller must release() it.
        """
        if self._closed:
            logger.error("Session pool has been disposed")
            raise PoolError.closed()

        logger.debug(
            f"Getting session: {self._idle.qsize()} idle sessions, "
            f"{self.available_permits} available permits"
        )

        granted: list[bool] = []
        try:
            await run_cancellable(self._acquire_permit(granted), cancel)
        except BaseException:
            # The wait may have been interrupted after the permit was taken.
            if granted:
                self._release_permit()
            raise

        if not granted:
            logger.error(
                f"Session pool exhausted: {self.capacity} sessions in use, "
                f"no permit within {self._config.permit_wait_ms}ms"
            )
            raise PoolError.exhausted(self.capacity, self._config.permit_wait_ms)

        try:
            if self._closed:
                raise PoolError.closed()
            pooled = self._take_idle()
            if pooled is None:
                pooled = await run_cancellable(self._start_new_session(), cancel)
        except BaseException:
            self._release_permit()
            raise

        pooled._mark_checked_out()
        return pooled

    async def _acquire_permit(self, granted: list[bool]) -> None:
        """Wait up to permit_wait_ms for a permit; records success in ``granted``."""
        if self._permits.locked():
            try:
                await asyncio.wait_for(
                    self._permits.acquire(), timeout=self._config.permit_wait_seconds,
                )
            except asyncio.TimeoutError:
                return
        else:
            await self._permits.acquire()
        self._checked_out += 1
        granted.append(True)

    def _take_idle(self) -> Optional[PooledSession]:
        """Pop the next live idle session, discarding any the transport has lost."""
        while not self._idle.empty():
            pooled = self._idle.get_nowait()
            if pooled.is_alive:
                logger.debug(f"Reusing idle session {pooled.session_id}")
                return pooled
            self._sessions_discarded += 1
            logger.debug(f"Discarded idle session {pooled.session_id}: no longer alive")
        return None

    async def _start_new_session(self) -> PooledSession:
        session = await self._session_factory()
        self._sessions_created += 1
        logger.info(f"Created new session {session.session_id}")
        return PooledSession(session, self._release_session, self._digest_factory)

    async def _release_session(self, pooled: PooledSession) -> None:
        alive = pooled.is_alive
        if alive and not self._closed:
            self._idle.put_nowait(pooled)
            self._release_permit()
            logger.debug(
                f"Session {pooled.session_id} returned to pool; "
                f"{self._idle.qsize()} idle sessions"
            )
            return

        self._release_permit()
        self._sessions_discarded += 1
        if alive:
            logger.debug(f"Pool closed; ending released session {pooled.session_id}")
            await pooled.close()
        else:
            logger.info(f"Dropped dead session {pooled.session_id}")

    def _release_permit(self) -> None:
        self._checked_out -= 1
        self._permits.release()

    # =========================================================================
    # LIFECYCLE
    # =========================================================================
    async def dispose(self) -> None:
        """Close the pool and end every idle session. Idempotent."""
        if self._closed:
            return
        self._closed = True
        logger.info(f"Disposing session pool; ending {self._idle.qsize()} idle sessions")

        while not self._idle.empty():
            pooled = self._idle.get_nowait()
            self._sessions_discarded += 1
            await pooled.close()

    async def __aenter__(self) -> SessionPool:
        return self

    async def __aexit__(self, *args: object) -> None:
        await self.dispose()

    def __repr__(self) -> str:
        return (
            f"SessionPool(capacity={self.capacity}, "
            f"available_permits={self.available_permits}, "
            f"idle={self._idle.qsize()}, closed={self._closed})"
        )
