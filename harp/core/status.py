"""
Session Status State Machine.

Explicit state transitions for the ModelSession lifecycle.
Never mutate session status directly — always go through assert_transition().

States:
    INACTIVE    — No session has ever run
    INITIALIZED — Session constructed, or a schema load is pending/failed
    LOADED      — Schema fetched; controls available; ready to submit
    RUNNING     — A job is in flight
    DONE        — Output relocated to the destination path
    ERROR       — The last job failed; the session holds the error message
    CANCELLED   — The last job was cancelled; its result was discarded

Invariants:
    1. Submission is only allowed once a schema is loaded.
    2. A running job always settles as exactly one of DONE/ERROR/CANCELLED.
    3. Cancellation is never reported as an error.
    4. A settled session can run again or load a new schema.

The string values are the legacy status-flag text ("Status.LOADED", ...)
so hosts that displayed the old flag file keep working unchanged.
"""

from __future__ import annotations

import logging
from enum import Enum

logger = logging.getLogger(__name__)


class SessionStatus(str, Enum):
    """Canonical session lifecycle states."""

    INACTIVE = "Status.INACTIVE"
    INITIALIZED = "Status.INITIALIZED"
    LOADED = "Status.LOADED"
    RUNNING = "Status.RUNNING"
    DONE = "Status.DONE"
    ERROR = "Status.ERROR"
    CANCELLED = "Status.CANCELLED"


# Settled states: the outcome of the most recent job.
SETTLED_STATES: frozenset[SessionStatus] = frozenset({
    SessionStatus.DONE,
    SessionStatus.ERROR,
    SessionStatus.CANCELLED,
})

_AFTER_JOB: frozenset[SessionStatus] = frozenset({
    SessionStatus.INITIALIZED,
    SessionStatus.RUNNING,
})

# Allowed transitions: from_state -> set of valid to_states.
_TRANSITIONS: dict[SessionStatus, frozenset[SessionStatus]] = {
    SessionStatus.INACTIVE: frozenset({SessionStatus.INITIALIZED}),
    SessionStatus.INITIALIZED: frozenset({
        SessionStatus.INITIALIZED,
        SessionStatus.LOADED,
    }),
    SessionStatus.LOADED: frozenset({
        SessionStatus.INITIALIZED,
        SessionStatus.RUNNING,
    }),
    SessionStatus.RUNNING: frozenset({
        SessionStatus.DONE,
        SessionStatus.ERROR,
        SessionStatus.CANCELLED,
    }),
    SessionStatus.DONE: _AFTER_JOB,
    SessionStatus.ERROR: _AFTER_JOB,
    SessionStatus.CANCELLED: _AFTER_JOB,
}


class InvalidTransitionError(Exception):
    """Raised when a state transition violates the state machine."""

    def __init__(self, from_state: SessionStatus, to_state: SessionStatus):
        self.from_state = from_state
        self.to_state = to_state
        super().__init__(
            f"Invalid transition: {from_state.value} → {to_state.value}"
        )


def assert_transition(
    from_state: SessionStatus,
    to_state: SessionStatus,
) -> None:
    """
    Validate that a state transition is allowed.

    Raises InvalidTransitionError if the transition violates the state machine.
    """
    allowed = _TRANSITIONS.get(from_state, frozenset())
    if to_state not in allowed:
        raise InvalidTransitionError(from_state, to_state)


def is_settled(status: SessionStatus) -> bool:
    """Check if a status is the outcome of a finished job."""
    return status in SETTLED_STATES


def can_submit(status: SessionStatus) -> bool:
    """Check if a job can be started from the given status."""
    return SessionStatus.RUNNING in _TRANSITIONS.get(status, frozenset())


def can_load(status: SessionStatus) -> bool:
    """Check if a schema (re)load can start from the given status."""
    return SessionStatus.INITIALIZED in _TRANSITIONS.get(status, frozenset())
