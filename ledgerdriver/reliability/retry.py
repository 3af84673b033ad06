"""
Retry Engine: Disposition-Driven Retries with Pluggable Backoff

Executes a fallible async operation under a RetryPolicy:
- At most max_retries + 1 attempts
- Only RetriableFault is retried; everything else propagates unchanged
- Before each retry the fault's disposition picks a recovery hook:
  SAME_SESSION → none, NEXT_POOLED_SESSION → next_session_action,
  NEW_SERVER_SESSION → new_session_action
- Then retry_notify(attempt, cancel) runs and the policy's backoff delay elapses
- Exhaustion re-raises the last fault's original cause

The engine knows nothing about sessions; the hooks are injected by the pool.
"""

from __future__ import annotations

import asyncio
import functools
import inspect
import logging
import random
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Optional, TypeVar

from ledgerdriver.core.config import RetryConfig
from ledgerdriver.core.errors import RetriableFault
from ledgerdriver.core.types import RetryDisposition
from ledgerdriver.core import constants as C
from ledgerdriver.reliability.cancellation import CancellationToken, run_cancellable

logger = logging.getLogger(__name__)

T = TypeVar("T")

SessionAction = Callable[[], Awaitable[None]]
RetryNotify = Callable[[int, Optional[CancellationToken]], Any]


@dataclass(frozen=True, slots=True)
class RetryContext:
    """Input to a backoff strategy."""
    retries_attempted: int
    last_error: BaseException


BackoffStrategy = Callable[[RetryContext], float]


def calculate_backoff(
    attempt: int,
    base_delay_ms: int,
    max_delay_ms: int,
    exponential_base: float,
    jitter: bool,
) -> float:
    """
    Calculate backoff delay in milliseconds with optional jitter.

    Full jitter: random(0, min(cap, base * 2^attempt))
    """
    delay = min(max_delay_ms, base_delay_ms * (exponential_base ** attempt))

    if jitter:
        delay = random.uniform(0, delay)

    return delay


def exponential_backoff(
    context: RetryContext,
    base_delay_ms: int = C.RETRY_BASE_DELAY_MS,
    max_delay_ms: int = C.RETRY_MAX_DELAY_MS,
) -> float:
    """Capped exponential backoff with full jitter, in seconds."""
    delay_ms = calculate_backoff(
        attempt=context.retries_attempted,
        base_delay_ms=base_delay_ms,
        max_delay_ms=max_delay_ms,
        exponential_base=C.RETRY_EXPONENTIAL_BASE,
        jitter=True,
    )
    return delay_ms / C.SECOND_MS


@dataclass(frozen=True)
class RetryPolicy:
    """
    Retry configuration.

    ``backoff`` receives the number of retries attempted so far and the
    fault that triggered the retry, and returns a delay in seconds.
    """

    max_retries: int = C.DEFAULT_MAX_RETRIES
    backoff: BackoffStrategy = field(default=exponential_backoff)

    def __post_init__(self) -> None:
        if self.max_retries < 0:
            raise ValueError("max_retries must be >= 0")

    @classmethod
    def default(cls) -> RetryPolicy:
        return cls()

    @classmethod
    def no_retry(cls) -> RetryPolicy:
        """Single attempt; faults surface immediately."""
        return cls(max_retries=0)

    @classmethod
    def from_config(cls, config: RetryConfig) -> RetryPolicy:
        return cls(
            max_retries=config.max_retries,
            backoff=functools.partial(
                exponential_backoff,
                base_delay_ms=config.base_delay_ms,
                max_delay_ms=config.max_delay_ms,
            ),
        )

    def delay_for(self, context: RetryContext) -> float:
        return max(0.0, float(self.backoff(context)))


class RetryHandler:
    """
    Executes an operation with disposition-driven recovery between attempts.

    Usage:
        handler = RetryHandler()
        value = await handler.retriable_execute(
            lambda: session.execute(body),
            RetryPolicy(max_retries=3),
            new_session_action=start_fresh_session,
            next_session_action=take_next_session,
        )
    """

    async def retriable_execute(
        self,
        operation: Callable[[], Awaitable[T]],
        retry_policy: RetryPolicy,
        new_session_action: SessionAction,
        next_session_action: SessionAction,
        retry_notify: Optional[RetryNotify] = None,
        cancel: Optional[CancellationToken] = None,
    ) -> T:
        """
        Run ``operation`` until it succeeds, fails terminally, or retries run out.

        Raises:
            CancellationRequested: ``cancel`` fired before or during an attempt
            Exception: the last retriable fault's original cause on exhaustion,
                any non-retriable fault unchanged otherwise
        """
        retries_attempted = 0

        while True:
            if cancel is not None:
                cancel.raise_if_cancelled()

            try:
                return await run_cancellable(operation(), cancel)
            except RetriableFault as fault:
                last_fault = fault

            if retries_attempted >= retry_policy.max_retries:
                raise self._exhausted(last_fault, retries_attempted + 1)

            retries_attempted += 1
            disposition = last_fault.disposition
            logger.debug(
                f"Retriable fault on attempt {retries_attempted}: "
                f"{last_fault.cause!r} → {disposition.name}"
            )

            match disposition:
                case RetryDisposition.NEW_SERVER_SESSION:
                    await run_cancellable(new_session_action(), cancel)
                case RetryDisposition.NEXT_POOLED_SESSION:
                    await run_cancellable(next_session_action(), cancel)
                case _:
                    pass

            if retry_notify is not None:
                notified = retry_notify(retries_attempted, cancel)
                if inspect.isawaitable(notified):
                    await run_cancellable(notified, cancel)

            delay = retry_policy.delay_for(RetryContext(
                retries_attempted=retries_attempted,
                last_error=last_fault.cause or last_fault,
            ))
            if delay > 0:
                logger.debug(f"Retrying in {delay * 1000:.1f}ms (attempt {retries_attempted + 1})")
                await run_cancellable(asyncio.sleep(delay), cancel)

    @staticmethod
    def _exhausted(fault: RetriableFault, attempts: int) -> BaseException:
        """Unwrap the last fault to its original cause, annotated with context."""
        logger.warning(
            f"Giving up after {attempts} attempts: {fault.cause!r}",
            extra={"error_id": fault.error_id, "transaction_id": fault.transaction_id},
        )
        if fault.cause is None:
            return fault
        fault.cause.add_note(
            f"Retries exhausted after {attempts} attempts "
            f"(last disposition {fault.disposition.name}, error id {fault.error_id})"
        )
        return fault.cause
