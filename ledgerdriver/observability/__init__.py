"""
Observability module: Structured logging.
"""

from ledgerdriver.observability.logging import (
    JsonFormatter,
    LogLevel,
    current_log_context,
    log_context,
    setup_logging,
    setup_logging_from_config,
)

__all__ = [
    "JsonFormatter",
    "LogLevel",
    "current_log_context",
    "log_context",
    "setup_logging",
    "setup_logging_from_config",
]
