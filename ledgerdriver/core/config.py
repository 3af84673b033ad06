"""
Configuration Management for the Ledger Transaction Core

Provides validated configuration with sensible defaults and
environment variable overrides.

Design:
- Immutable after construction
- Fail-fast on invalid configuration
- Type-safe with dataclasses
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field

from ledgerdriver.core.types import Result, Ok, Err
from ledgerdriver.core import constants as C


@dataclass(frozen=True)
class PoolConfig:
    """Session pool configuration."""

    max_concurrent_sessions: int = C.DEFAULT_MAX_CONCURRENT_SESSIONS
    # Fail-fast saturation check; larger values let callers queue for a session
    permit_wait_ms: int = C.DEFAULT_PERMIT_WAIT_MS

    def __post_init__(self) -> None:
        if self.max_concurrent_sessions < 1:
            raise ValueError("max_concurrent_sessions must be >= 1")
        if self.permit_wait_ms < 0:
            raise ValueError("permit_wait_ms must be >= 0")

    @property
    def permit_wait_seconds(self) -> float:
        return self.permit_wait_ms / C.SECOND_MS


@dataclass(frozen=True)
class RetryConfig:
    """Retry engine configuration."""

    max_retries: int = C.DEFAULT_MAX_RETRIES
    base_delay_ms: int = C.RETRY_BASE_DELAY_MS
    max_delay_ms: int = C.RETRY_MAX_DELAY_MS

    def __post_init__(self) -> None:
        if self.max_retries < 0:
            raise ValueError("max_retries must be >= 0")
        if self.base_delay_ms < 0 or self.max_delay_ms < 0:
            raise ValueError("retry delays must be >= 0")


@dataclass(frozen=True)
class ObservabilityConfig:
    """Logging configuration."""

    log_level: str = "INFO"
    log_json: bool = True


@dataclass(frozen=True)
class DriverConfig:
    """Root configuration for the transaction core."""

    pool: PoolConfig = field(default_factory=PoolConfig)
    retry: RetryConfig = field(default_factory=RetryConfig)
    observability: ObservabilityConfig = field(default_factory=ObservabilityConfig)

    @classmethod
    def from_env(cls) -> Result[DriverConfig, str]:
        """
        Load configuration from environment variables.

        Environment variables are prefixed with LEDGER_.
        Example: LEDGER_MAX_CONCURRENT_SESSIONS, LEDGER_RETRY_MAX_RETRIES
        """
        def env(name: str, default: str) -> str:
            return os.getenv(f"{C.ENV_PREFIX}{name}", default)

        try:
            pool = PoolConfig(
                max_concurrent_sessions=int(env(
                    "MAX_CONCURRENT_SESSIONS", str(C.DEFAULT_MAX_CONCURRENT_SESSIONS),
                )),
                permit_wait_ms=int(env("PERMIT_WAIT_MS", str(C.DEFAULT_PERMIT_WAIT_MS))),
            )

            retry = RetryConfig(
                max_retries=int(env("RETRY_MAX_RETRIES", str(C.DEFAULT_MAX_RETRIES))),
                base_delay_ms=int(env("RETRY_BASE_DELAY_MS", str(C.RETRY_BASE_DELAY_MS))),
                max_delay_ms=int(env("RETRY_MAX_DELAY_MS", str(C.RETRY_MAX_DELAY_MS))),
            )

            observability = ObservabilityConfig(
                log_level=env("LOG_LEVEL", "INFO").upper(),
                log_json=env("LOG_JSON", "true").lower() in {"1", "true", "yes"},
            )

            return Ok(cls(pool=pool, retry=retry, observability=observability))
        except (ValueError, TypeError) as e:
            return Err(f"Configuration error: {e}")

    def validate(self) -> Result[None, str]:
        """Validate cross-field invariants."""
        if self.retry.base_delay_ms > self.retry.max_delay_ms:
            return Err("retry base_delay_ms cannot exceed max_delay_ms")
        if self.observability.log_level not in {
            "DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL",
        }:
            return Err(f"Unknown log level {self.observability.log_level!r}")
        return Ok(None)
