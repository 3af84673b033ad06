"""
Unit Tests: Structured Logging
"""

import asyncio
import io
import json
import logging

import pytest

from ledgerdriver.core.config import ObservabilityConfig
from ledgerdriver.core.errors import PoolError, TransactionFailed
from ledgerdriver.observability.logging import (
    JsonFormatter,
    LogLevel,
    current_log_context,
    log_context,
    setup_logging_from_config,
)
from ledgerdriver.tests.fakes import FakeLedgerSession, make_pooled


@pytest.fixture
def json_logger():
    stream = io.StringIO()
    handler = logging.StreamHandler(stream)
    handler.setFormatter(JsonFormatter())

    logger = logging.getLogger("ledgerdriver.session.pooled")
    previous_level = logger.level
    logger.addHandler(handler)
    logger.setLevel(logging.DEBUG)
    try:
        yield stream
    finally:
        logger.removeHandler(handler)
        logger.setLevel(previous_level)


def records(stream):
    return [json.loads(line) for line in stream.getvalue().splitlines() if line]


class TestLogContext:
    def test_fields_scoped_to_block(self):
        with log_context(session_id="s-1"):
            with log_context(transaction_id="t-1"):
                assert current_log_context() == {"session_id": "s-1", "transaction_id": "t-1"}
            assert current_log_context() == {"session_id": "s-1"}
        assert current_log_context() == {}

    def test_context_does_not_leak_between_tasks(self):
        async def tagged(name):
            with log_context(session_id=name):
                await asyncio.sleep(0.001)
                return current_log_context()["session_id"]

        async def scenario():
            return await asyncio.gather(tagged("a"), tagged("b"))

        assert asyncio.run(scenario()) == ["a", "b"]


class TestJsonFormatter:
    def test_stamps_context_and_extra(self):
        stream = io.StringIO()
        handler = logging.StreamHandler(stream)
        handler.setFormatter(JsonFormatter())
        logger = logging.getLogger("ledgerdriver.tests.formatter")
        logger.addHandler(handler)
        logger.propagate = False
        try:
            with log_context(session_id="s-1"):
                logger.warning("released", extra={"idle": 3})
        finally:
            logger.removeHandler(handler)
            logger.propagate = True

        record = records(stream)[0]
        assert record["message"] == "released"
        assert record["level"] == "WARNING"
        assert record["session_id"] == "s-1"
        assert record["idle"] == 3

    def test_pooled_session_logs_carry_ids(self, json_logger):
        session = FakeLedgerSession("session-9")
        session.execute_faults.append(ValueError("boom"))

        async def body(txn):
            await txn.execute("SELECT 1")

        async def scenario():
            pooled, _ = make_pooled(session)
            with pytest.raises(TransactionFailed):
                await pooled.execute(body)

        asyncio.run(scenario())

        failure = [r for r in records(json_logger) if "failed" in r["message"]][0]
        assert failure["session_id"] == "session-9"
        assert failure["transaction_id"] == "session-9-txn-1"


class TestSetupLogging:
    def test_from_config(self):
        root = logging.getLogger()
        saved_handlers, saved_level = list(root.handlers), root.level
        stream = io.StringIO()
        try:
            setup_logging_from_config(ObservabilityConfig(log_level="debug", log_json=True), stream)
            logging.getLogger("ledgerdriver.tests.setup").debug("configured")
        finally:
            root.handlers[:] = saved_handlers
            root.setLevel(saved_level)

        record = records(stream)[0]
        assert record["message"] == "configured"
        assert record["level"] == "DEBUG"


class TestDriverErrors:
    def test_driver_error_serialized(self):
        stream = io.StringIO()
        handler = logging.StreamHandler(stream)
        handler.setFormatter(JsonFormatter())
        logger = logging.getLogger("ledgerdriver.tests.errors")
        logger.addHandler(handler)
        logger.propagate = False
        try:
            logger.error("checkout failed", exc_info=PoolError.closed())
        finally:
            logger.removeHandler(handler)
            logger.propagate = True

        record = records(stream)[0]
        assert record["error"]["code"] == "POOL_CLOSED"
        assert "PoolClosed" in record["exception"]
        assert "session_id" not in record


class TestLogLevel:
    def test_parse(self):
        assert LogLevel.parse("warning") == LogLevel.WARNING

    def test_parse_unknown(self):
        with pytest.raises(ValueError):
            LogLevel.parse("chatty")
