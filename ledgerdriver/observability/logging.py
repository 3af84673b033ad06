"""
Structured Logging: JSON Lines Correlated by Session and Transaction

Provides:
- JSON-formatted log output, one object per line
- session_id / transaction_id correlation via a task-scoped ContextVar
- Driver errors attached as structured fields instead of bare tracebacks

Fields bound with ``log_context`` follow the asyncio task that bound them,
so concurrent transactions on different sessions never mix ids.
"""

from __future__ import annotations

import json
import logging
import sys
from contextvars import ContextVar
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from enum import IntEnum
from typing import Any, Optional, TextIO

from ledgerdriver.core.config import ObservabilityConfig
from ledgerdriver.core.errors import LedgerDriverError


class LogLevel(IntEnum):
    """Log level enumeration."""
    DEBUG = 10
    INFO = 20
    WARNING = 30
    ERROR = 40
    CRITICAL = 50

    @classmethod
    def parse(cls, name: str) -> LogLevel:
        """Case-insensitive lookup; raises ValueError for unknown names."""
        try:
            return cls[name.upper()]
        except KeyError:
            raise ValueError(f"Unknown log level {name!r}") from None


# Fields bound by log_context() for the running task
_log_context: ContextVar[dict[str, Any]] = ContextVar("log_context", default={})

# Attributes every logging.LogRecord carries; anything else came from extra=
_STANDARD_ATTRS = frozenset(
    logging.LogRecord("", 0, "", 0, "", None, None).__dict__
) | {"message", "asctime"}


@dataclass
class DriverLogLine:
    """One JSON log line."""
    timestamp: str
    level: str
    logger: str
    message: str
    session_id: Optional[str] = None
    transaction_id: Optional[str] = None
    error: Optional[dict[str, Any]] = None
    fields: dict[str, Any] = field(default_factory=dict)

    def to_json(self) -> str:
        data = {k: v for k, v in asdict(self).items() if k != "fields" and v is not None}
        data.update(self.fields)
        return json.dumps(data, default=str)


class JsonFormatter(logging.Formatter):
    """
    Render records as JSON lines.

    Bound context comes first, then ``extra=`` fields from the call site,
    which win on conflict. A LedgerDriverError in ``exc_info`` is emitted
    under ``error`` via its to_dict().
    """

    def format(self, record: logging.LogRecord) -> str:
        fields = dict(_log_context.get())
        fields.update(
            (key, value) for key, value in record.__dict__.items()
            if key not in _STANDARD_ATTRS
        )

        error = None
        if record.exc_info:
            exc = record.exc_info[1]
            if isinstance(exc, LedgerDriverError):
                error = exc.to_dict()
            fields["exception"] = self.formatException(record.exc_info)

        line = DriverLogLine(
            timestamp=datetime.now(timezone.utc).isoformat(),
            level=record.levelname,
            logger=record.name,
            message=record.getMessage(),
            session_id=fields.pop("session_id", None),
            transaction_id=fields.pop("transaction_id", None),
            error=error,
            fields=fields,
        )
        return line.to_json()


class _LogContext:
    """Binds fields onto _log_context for the duration of a with-block."""

    __slots__ = ("_fields", "_token")

    def __init__(self, fields: dict[str, Any]) -> None:
        self._fields = fields
        self._token = None

    def __enter__(self) -> _LogContext:
        self._token = _log_context.set({**_log_context.get(), **self._fields})
        return self

    def __exit__(self, *args: Any) -> None:
        if self._token is not None:
            _log_context.reset(self._token)
            self._token = None


def log_context(**fields: Any) -> _LogContext:
    """
    Scope fields onto every JSON log line emitted inside the block.

    Usage:
        with log_context(session_id=session.session_id):
            logger.info("Starting transaction")
    """
    return _LogContext(fields)


def current_log_context() -> dict[str, Any]:
    """Snapshot of the fields bound for the running task."""
    return dict(_log_context.get())


def setup_logging(
    level: LogLevel = LogLevel.INFO,
    json_output: bool = True,
    stream: Optional[TextIO] = None,
) -> None:
    """
    Route all logging to a single stream handler on the root logger.

    Args:
        level: Minimum log level
        json_output: JSON lines when true, a pipe-separated text format otherwise
        stream: Output stream (default: stderr)
    """
    handler = logging.StreamHandler(stream or sys.stderr)
    handler.setLevel(level.value)
    handler.setFormatter(
        JsonFormatter() if json_output
        else logging.Formatter("%(asctime)s | %(levelname)-8s | %(name)s | %(message)s")
    )

    root = logging.getLogger()
    root.handlers.clear()
    root.addHandler(handler)
    root.setLevel(level.value)

    logging.getLogger("asyncio").setLevel(logging.WARNING)


def setup_logging_from_config(
    config: ObservabilityConfig,
    stream: Optional[TextIO] = None,
) -> None:
    """Configure logging from an ObservabilityConfig."""
    setup_logging(LogLevel.parse(config.log_level), config.log_json, stream)
