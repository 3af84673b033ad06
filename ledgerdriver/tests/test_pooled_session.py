"""
Unit Tests: PooledSession

Tests:
    - Call accounting on the happy path
    - Classification of every fault shape, with abort and liveness
    - Explicit abort, swallowed abort, sync bodies
    - Release bookkeeping and close
"""

import asyncio

import pytest

from ledgerdriver.core.errors import (
    CancellationRequested,
    DigestMismatch,
    RetriableFault,
    ServiceFault,
    StateError,
    TransactionAborted,
    TransactionFailed,
)
from ledgerdriver.core.types import RetryDisposition
from ledgerdriver.reliability.cancellation import CancellationToken
from ledgerdriver.tests.fakes import FakeDigest, FakeLedgerSession, make_pooled, select_one


def execute(session, body, **kwargs):
    pooled, _ = make_pooled(session, **kwargs)
    return pooled, asyncio.run(pooled.execute(body))


def execute_failing(session, body, error_type, **kwargs):
    pooled, _ = make_pooled(session, **kwargs)
    with pytest.raises(error_type) as exc_info:
        asyncio.run(pooled.execute(body))
    return pooled, exc_info.value


class TestHappyPath:
    def test_start_execute_commit_once_each(self, fake_session):
        pooled, value = execute(fake_session, select_one)

        assert value == [1]
        assert fake_session.start_calls == 1
        assert fake_session.execute_calls == 1
        assert fake_session.commit_calls == 1
        assert fake_session.abort_calls == 0
        assert pooled.is_alive

    def test_sync_body(self, fake_session):
        _, value = execute(fake_session, lambda txn: "no statements")

        assert value == "no statements"
        assert fake_session.commit_calls == 1

    def test_with_digest(self, fake_session):
        execute(fake_session, select_one, digest_factory=FakeDigest)
        assert fake_session.expected_digests[0] is not None


class TestExplicitAbort:
    def test_abort(self, fake_session):
        async def body(txn):
            await txn.abort()

        pooled, error = execute_failing(fake_session, body, TransactionAborted)

        assert fake_session.abort_calls == 1
        assert fake_session.commit_calls == 0
        assert error.session_alive
        assert pooled.is_alive

    def test_swallowed_abort_still_raises(self, fake_session):
        async def body(txn):
            try:
                await txn.abort()
            except TransactionAborted:
                return "ignored"

        pooled, error = execute_failing(fake_session, body, TransactionAborted)

        assert fake_session.commit_calls == 0
        assert error.session_alive
        assert pooled.is_alive

    def test_failed_abort_kills_session(self, fake_session):
        fake_session.abort_faults.append(ServiceFault.from_status(500))

        async def body(txn):
            await txn.abort()

        pooled, error = execute_failing(fake_session, body, TransactionAborted)

        assert not error.session_alive
        assert not pooled.is_alive

    def test_statement_after_swallowed_abort(self, fake_session):
        async def body(txn):
            try:
                await txn.abort()
            except TransactionAborted:
                pass
            await txn.execute("SELECT 1")

        pooled, error = execute_failing(fake_session, body, TransactionAborted)

        assert isinstance(error.cause, StateError)
        assert fake_session.abort_calls == 1
        assert fake_session.execute_calls == 0
        assert error.session_alive
        assert pooled.is_alive

    def test_repeated_abort_keeps_session(self, fake_session):
        async def body(txn):
            try:
                await txn.abort()
            except TransactionAborted:
                pass
            await txn.abort()

        pooled, error = execute_failing(fake_session, body, TransactionAborted)

        assert fake_session.abort_calls == 1
        assert error.session_alive
        assert pooled.is_alive


class TestFaultClassification:
    def test_generic_body_fault(self, fake_session):
        boom = ValueError("boom")

        async def body(txn):
            raise boom

        pooled, error = execute_failing(fake_session, body, TransactionFailed)

        assert error.cause is boom
        assert fake_session.abort_calls == 1
        assert fake_session.commit_calls == 0
        assert pooled.is_alive

    def test_occ_conflict_on_commit(self, fake_session):
        fake_session.commit_faults.append(ServiceFault.occ_conflict("t"))

        pooled, error = execute_failing(fake_session, select_one, RetriableFault)

        assert error.disposition == RetryDisposition.SAME_SESSION
        assert error.session_alive
        assert fake_session.abort_calls == 0
        assert pooled.is_alive

    def test_invalid_session(self, fake_session):
        fake_session.execute_faults.append(ServiceFault.invalid_session("session-1"))

        pooled, error = execute_failing(fake_session, select_one, RetriableFault)

        assert error.disposition == RetryDisposition.NEW_SERVER_SESSION
        assert not error.session_alive
        assert fake_session.abort_calls == 0
        assert not pooled.is_alive

    @pytest.mark.parametrize("status", [500, 503])
    def test_transient_with_clean_abort(self, fake_session, status):
        fake_session.execute_faults.append(ServiceFault.from_status(status))

        pooled, error = execute_failing(fake_session, select_one, RetriableFault)

        assert error.disposition == RetryDisposition.SAME_SESSION
        assert fake_session.abort_calls == 1
        assert pooled.is_alive

    def test_transient_with_failed_abort(self, fake_session):
        fake_session.execute_faults.append(ServiceFault.from_status(503))
        fake_session.abort_faults.append(ServiceFault.from_status(500))

        pooled, error = execute_failing(fake_session, select_one, RetriableFault)

        assert error.disposition == RetryDisposition.NEXT_POOLED_SESSION
        assert fake_session.abort_calls == 1
        assert not pooled.is_alive

    def test_client_error(self, fake_session):
        fake_session.execute_faults.append(ServiceFault.from_status(403))

        pooled, error = execute_failing(fake_session, select_one, TransactionFailed)

        assert fake_session.abort_calls == 1
        assert error.session_alive

    @pytest.mark.parametrize("abort_fails", [False, True])
    def test_bad_request_on_start(self, fake_session, abort_fails):
        fake_session.start_faults.append(ServiceFault.bad_request("Transaction already open"))
        if abort_fails:
            fake_session.abort_faults.append(ServiceFault.from_status(500))

        pooled, error = execute_failing(fake_session, select_one, TransactionFailed)

        assert fake_session.abort_calls == 1
        assert fake_session.execute_calls == 0
        assert error.session_alive is not abort_fails
        assert pooled.is_alive is not abort_fails
        assert error.transaction_id is None

    def test_digest_mismatch_fails(self, fake_session):
        fake_session.commit_digest_override = b"\x00" * 32

        _, error = execute_failing(
            fake_session, select_one, TransactionFailed, digest_factory=FakeDigest,
        )

        assert isinstance(error.cause, DigestMismatch)
        assert fake_session.abort_calls == 1

    def test_cause_is_chained(self, fake_session):
        fake_session.commit_faults.append(ServiceFault.occ_conflict("t"))

        _, error = execute_failing(fake_session, select_one, RetriableFault)

        assert error.__cause__ is error.cause


class TestCancellation:
    def test_task_cancel_mid_statement_aborts(self, fake_session):
        async def scenario():
            fake_session.execute_gate = asyncio.Event()
            pooled, _ = make_pooled(fake_session)
            task = asyncio.create_task(pooled.execute(select_one))
            await asyncio.sleep(0.01)
            task.cancel()
            with pytest.raises(asyncio.CancelledError):
                await task
            return pooled

        pooled = asyncio.run(scenario())
        assert fake_session.abort_calls == 1
        assert fake_session.commit_calls == 0
        assert pooled.is_alive

    def test_task_cancel_mid_commit_aborts(self, fake_session):
        async def scenario():
            fake_session.commit_gate = asyncio.Event()
            pooled, _ = make_pooled(fake_session)
            task = asyncio.create_task(pooled.execute(select_one))
            await asyncio.sleep(0.01)
            task.cancel()
            with pytest.raises(asyncio.CancelledError):
                await task
            return pooled

        pooled = asyncio.run(scenario())
        assert fake_session.commit_calls == 1
        assert fake_session.abort_calls == 1
        assert pooled.is_alive

    def test_cancel_mid_commit_with_failed_abort_kills_session(self, fake_session):
        fake_session.abort_faults.append(ServiceFault.from_status(500))

        async def scenario():
            fake_session.commit_gate = asyncio.Event()
            pooled, _ = make_pooled(fake_session)
            task = asyncio.create_task(pooled.execute(select_one))
            await asyncio.sleep(0.01)
            task.cancel()
            with pytest.raises(asyncio.CancelledError):
                await task
            return pooled

        pooled = asyncio.run(scenario())
        assert fake_session.abort_calls == 1
        assert not pooled.is_alive


class TestManualTransactions:
    def test_start_transaction_failure_is_classified(self, fake_session):
        fake_session.start_faults.append(ServiceFault.from_status(503))

        async def scenario():
            pooled, _ = make_pooled(fake_session)
            with pytest.raises(RetriableFault):
                await pooled.start_transaction()

        asyncio.run(scenario())
        assert fake_session.abort_calls == 1

    def test_start_transaction_honours_cancelled_token(self, fake_session):
        async def scenario():
            pooled, _ = make_pooled(fake_session)
            token = CancellationToken()
            token.cancel()
            with pytest.raises(CancellationRequested):
                await pooled.start_transaction(cancel=token)

        asyncio.run(scenario())
        assert fake_session.start_calls == 0
        assert fake_session.abort_calls == 0

    def test_one_transaction_in_flight(self, fake_session):
        async def scenario():
            fake_session.execute_gate = asyncio.Event()
            pooled, _ = make_pooled(fake_session)
            first = asyncio.create_task(pooled.execute(select_one))
            await asyncio.sleep(0.01)
            with pytest.raises(StateError):
                await pooled.execute(select_one)
            fake_session.execute_gate.set()
            return await first

        assert asyncio.run(scenario()) == [1]


class TestLifecycle:
    def test_release_once_per_checkout(self, fake_session):
        async def scenario():
            pooled, recorder = make_pooled(fake_session)
            pooled._mark_checked_out()
            await pooled.release()
            await pooled.release()
            return pooled, recorder

        pooled, recorder = asyncio.run(scenario())
        assert recorder.released == [pooled]
        assert not pooled.checked_out

    def test_close_swallows_end_failure(self, fake_session, caplog):
        fake_session.end_faults.append(ServiceFault.from_status(500))

        async def scenario():
            pooled, _ = make_pooled(fake_session)
            await pooled.close()
            return pooled

        pooled = asyncio.run(scenario())
        assert fake_session.end_calls == 1
        assert not pooled.is_alive
        assert "Ignored error ending session" in caplog.text

    def test_transport_liveness_respected(self, fake_session):
        pooled, _ = make_pooled(fake_session)
        fake_session.alive = False
        assert not pooled.is_alive
