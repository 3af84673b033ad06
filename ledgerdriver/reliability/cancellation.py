"""
Cooperative Cancellation

A CancellationToken lets a caller abandon a pooled execution from outside
the task running it. Every suspension point (permit wait, session RPC,
retry hook, backoff delay) races against the token; when the token fires
the in-flight awaitable is cancelled and allowed to unwind (abort the
transaction, release the session) before CancellationRequested is raised.

Plain asyncio task cancellation keeps working alongside tokens.
"""

from __future__ import annotations

import asyncio
from typing import Awaitable, Optional, TypeVar

from ledgerdriver.core.errors import CancellationRequested

T = TypeVar("T")


class CancellationToken:
    """
    One-shot cancellation signal.

    Usage:
        token = CancellationToken()
        task = asyncio.create_task(pool.execute(body, cancel=token))
        ...
        token.cancel("shutting down")
    """

    __slots__ = ("_event", "_reason")

    def __init__(self) -> None:
        self._event = asyncio.Event()
        self._reason = "Cancellation requested"

    def cancel(self, reason: Optional[str] = None) -> None:
        """Request cancellation. Later calls are no-ops."""
        if self._event.is_set():
            return
        if reason:
            self._reason = reason
        self._event.set()

    @property
    def is_cancelled(self) -> bool:
        return self._event.is_set()

    @property
    def reason(self) -> str:
        return self._reason

    def raise_if_cancelled(self) -> None:
        if self._event.is_set():
            raise CancellationRequested(self._reason)

    async def wait(self) -> None:
        await self._event.wait()


async def run_cancellable(
    awaitable: Awaitable[T],
    token: Optional[CancellationToken],
) -> T:
    """
    Await ``awaitable`` unless ``token`` fires first.

    On cancellation the awaitable is cancelled and awaited so its cleanup
    runs before CancellationRequested propagates.
    """
    if token is None:
        return await awaitable

    if token.is_cancelled:
        if asyncio.iscoroutine(awaitable):
            awaitable.close()
        raise CancellationRequested(token.reason)

    task = asyncio.ensure_future(awaitable)
    waiter = asyncio.ensure_future(token.wait())
    try:
        await asyncio.wait({task, waiter}, return_when=asyncio.FIRST_COMPLETED)
    except asyncio.CancelledError:
        task.cancel()
        waiter.cancel()
        await asyncio.gather(task, waiter, return_exceptions=True)
        raise

    if task.done():
        waiter.cancel()
        return task.result()

    task.cancel()
    try:
        await task
    except asyncio.CancelledError:
        pass
    except Exception as exc:
        raise CancellationRequested(token.reason) from exc
    raise CancellationRequested(token.reason)
