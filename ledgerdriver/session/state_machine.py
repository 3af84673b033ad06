"""
Transaction State Machine: Lifecycle FSM for One Transaction Attempt

States:
    IDLE       → Attempt created, nothing sent yet
    STARTING   → start-transaction in flight
    OPEN       → Transaction executor handed to the body
    COMMITTING → commit-transaction in flight
    COMMITTED  → Final, effects applied
    ABORTING   → abort-transaction in flight
    ABORTED    → Final, deliberate abort
    FAILED     → Final, attempt failed

Transitions:
    IDLE       → STARTING   : START
    STARTING   → OPEN       : OPENED
    STARTING   → FAILED     : FAIL
    OPEN       → COMMITTING : COMMIT
    OPEN       → ABORTING   : ABORT
    OPEN       → FAILED     : FAIL
    COMMITTING → COMMITTED  : COMMITTED
    COMMITTING → FAILED     : FAIL
    ABORTING   → ABORTED    : ABORTED
    ABORTING   → FAILED     : FAIL

Design:
    - Transition table is an immutable frozenset
    - transition() returns a Result; require() raises StateError
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum, auto
from typing import Optional

from ledgerdriver.core.errors import StateError
from ledgerdriver.core.types import Result, Ok, Err, Timestamp

logger = logging.getLogger(__name__)


# =============================================================================
# TRANSACTION STATE ENUMERATION
# =============================================================================
class TransactionState(Enum):
    """Transaction attempt lifecycle states."""
    IDLE = auto()
    STARTING = auto()
    OPEN = auto()
    COMMITTING = auto()
    COMMITTED = auto()
    ABORTING = auto()
    ABORTED = auto()
    FAILED = auto()

    @property
    def is_terminal(self) -> bool:
        return self in {
            TransactionState.COMMITTED,
            TransactionState.ABORTED,
            TransactionState.FAILED,
        }

    @property
    def is_open(self) -> bool:
        return self == TransactionState.OPEN


# =============================================================================
# TRANSITION DEFINITIONS
# =============================================================================
@dataclass(frozen=True, slots=True)
class TransactionTransition:
    """A valid state transition and the trigger that fires it."""
    from_state: TransactionState
    to_state: TransactionState
    trigger: str


VALID_TRANSITIONS: frozenset[TransactionTransition] = frozenset({
    TransactionTransition(TransactionState.IDLE, TransactionState.STARTING, "START"),
    TransactionTransition(TransactionState.STARTING, TransactionState.OPEN, "OPENED"),
    TransactionTransition(TransactionState.STARTING, TransactionState.FAILED, "FAIL"),

    TransactionTransition(TransactionState.OPEN, TransactionState.COMMITTING, "COMMIT"),
    TransactionTransition(TransactionState.OPEN, TransactionState.ABORTING, "ABORT"),
    TransactionTransition(TransactionState.OPEN, TransactionState.FAILED, "FAIL"),

    TransactionTransition(TransactionState.COMMITTING, TransactionState.COMMITTED, "COMMITTED"),
    TransactionTransition(TransactionState.COMMITTING, TransactionState.FAILED, "FAIL"),

    TransactionTransition(TransactionState.ABORTING, TransactionState.ABORTED, "ABORTED"),
    TransactionTransition(TransactionState.ABORTING, TransactionState.FAILED, "FAIL"),
})


@dataclass(frozen=True, slots=True)
class TransitionEvent:
    """Record of an applied transition."""
    from_state: TransactionState
    to_state: TransactionState
    trigger: str
    timestamp: Timestamp


# =============================================================================
# STATE MACHINE IMPLEMENTATION
# =============================================================================
class TransactionStateMachine:
    """
    Finite State Machine for a single transaction attempt.

    Usage:
        fsm = TransactionStateMachine()
        fsm.require("START")
        ...
        result = fsm.transition("FAIL")
        if result.is_err():
            ...  # already terminal

    Not coroutine-safe: an attempt is driven by exactly one task.
    """

    __slots__ = ("_state", "_transaction_id", "_history")

    def __init__(self) -> None:
        self._state = TransactionState.IDLE
        self._transaction_id: Optional[str] = None
        self._history: list[TransitionEvent] = []

    def transition(self, trigger: str) -> Result[TransitionEvent, str]:
        """
        Attempt state transition.

        Returns:
            Ok(event) on successful transition
            Err(message) when no transition matches the trigger
        """
        current = self._state
        target: Optional[TransactionState] = None
        for t in VALID_TRANSITIONS:
            if t.from_state == current and t.trigger == trigger:
                target = t.to_state
                break

        if target is None:
            return Err(f"No valid transition from {current.name} with trigger '{trigger}'")

        self._state = target
        event = TransitionEvent(
            from_state=current,
            to_state=target,
            trigger=trigger,
            timestamp=Timestamp.now(),
        )
        self._history.append(event)
        logger.debug(f"Transaction {self._transaction_id}: {current.name} → {target.name}")
        return Ok(event)

    def require(self, trigger: str) -> TransitionEvent:
        """Apply a transition or raise StateError."""
        result = self.transition(trigger)
        if result.is_err():
            raise StateError.illegal_transition(self._state.name, trigger)
        return result.unwrap()

    def can_transition(self, trigger: str) -> bool:
        """Check if transition is possible (without executing)."""
        return any(
            t.from_state == self._state and t.trigger == trigger
            for t in VALID_TRANSITIONS
        )

    def bind(self, transaction_id: str) -> None:
        """Attach the server-assigned transaction id once start succeeds."""
        self._transaction_id = transaction_id

    @property
    def state(self) -> TransactionState:
        return self._state

    @property
    def transaction_id(self) -> Optional[str]:
        return self._transaction_id

    @property
    def history(self) -> tuple[TransitionEvent, ...]:
        return tuple(self._history)
