"""
Unit Tests: Cancellation Token and run_cancellable
"""

import asyncio

import pytest

from ledgerdriver.core.errors import CancellationRequested
from ledgerdriver.reliability.cancellation import CancellationToken, run_cancellable


class TestCancellationToken:
    def test_cancel_once(self):
        async def scenario():
            token = CancellationToken()
            assert not token.is_cancelled
            token.cancel("first")
            token.cancel("second")
            return token

        token = asyncio.run(scenario())
        assert token.is_cancelled
        assert token.reason == "first"

    def test_raise_if_cancelled(self):
        async def scenario():
            token = CancellationToken()
            token.raise_if_cancelled()
            token.cancel("stop")
            with pytest.raises(CancellationRequested, match="stop"):
                token.raise_if_cancelled()

        asyncio.run(scenario())


class TestRunCancellable:
    def test_without_token(self):
        async def value():
            return 42

        assert asyncio.run(run_cancellable(value(), None)) == 42

    def test_completes_before_cancel(self):
        async def scenario():
            async def value():
                await asyncio.sleep(0)
                return "done"
            return await run_cancellable(value(), CancellationToken())

        assert asyncio.run(scenario()) == "done"

    def test_already_cancelled_never_runs(self):
        started = []

        async def work():
            started.append(True)

        async def scenario():
            token = CancellationToken()
            token.cancel()
            with pytest.raises(CancellationRequested):
                await run_cancellable(work(), token)

        asyncio.run(scenario())
        assert started == []

    def test_cancel_mid_flight_runs_cleanup(self):
        cleaned = []

        async def slow():
            try:
                await asyncio.sleep(10)
            finally:
                cleaned.append(True)

        async def scenario():
            token = CancellationToken()
            asyncio.get_running_loop().call_later(0.01, token.cancel, "shutting down")
            with pytest.raises(CancellationRequested) as exc_info:
                await run_cancellable(slow(), token)
            return exc_info.value

        error = asyncio.run(scenario())
        assert cleaned == [True]
        assert error.reason == "shutting down"

    def test_task_cancellation_still_propagates(self):
        async def scenario():
            token = CancellationToken()
            task = asyncio.create_task(run_cancellable(asyncio.sleep(10), token))
            await asyncio.sleep(0.01)
            task.cancel()
            with pytest.raises(asyncio.CancelledError) as exc_info:
                await task
            return exc_info.value

        error = asyncio.run(scenario())
        assert not isinstance(error, CancellationRequested)

    def test_errors_pass_through(self):
        async def failing():
            raise ValueError("boom")

        async def scenario():
            with pytest.raises(ValueError):
                await run_cancellable(failing(), CancellationToken())

        asyncio.run(scenario())
