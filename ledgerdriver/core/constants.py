"""
Driver-Wide Constants for the Ledger Transaction Core

All defaults for pool sizing, permit probing and retry backoff
are centralized here.
"""

from typing import Final

# =============================================================================
# TIME UNITS
# =============================================================================
SECOND_MS: Final[int] = 1000

# =============================================================================
# SESSION POOL
# =============================================================================
DEFAULT_MAX_CONCURRENT_SESSIONS: Final[int] = 50

# Permit wait is a saturation check, not a queue: a checkout either finds a
# permit almost immediately or fails with PoolExhausted.
DEFAULT_PERMIT_WAIT_MS: Final[int] = 1

# =============================================================================
# RETRY
# =============================================================================
DEFAULT_MAX_RETRIES: Final[int] = 4
RETRY_BASE_DELAY_MS: Final[int] = 10
RETRY_MAX_DELAY_MS: Final[int] = 5 * SECOND_MS
RETRY_EXPONENTIAL_BASE: Final[float] = 2.0

# =============================================================================
# ENVIRONMENT
# =============================================================================
ENV_PREFIX: Final[str] = "LEDGER_"
