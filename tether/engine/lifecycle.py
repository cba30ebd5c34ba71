"""Process lifecycle state machine.

Defines valid transitions and enforces them. Invalid transitions
raise ValueError rather than silently proceeding.

State Diagram:

    NOT_STARTED ──> INITIALIZING ──┬──> READY ──> PROCESSING <──> PAUSED
                                   │                  ^
                                   └──────────────────┘  (seed prompt)

    Any live state ──> TERMINATING ──> TERMINATED
    Any non-terminal state ──> ERROR  (terminal, no restart)
"""
from __future__ import annotations

from .models import ProcessState

VALID_TRANSITIONS: dict[ProcessState, set[ProcessState]] = {
    ProcessState.NOT_STARTED: {
        ProcessState.INITIALIZING,
        ProcessState.ERROR,
    },
    ProcessState.INITIALIZING: {
        ProcessState.READY,
        ProcessState.PROCESSING,
        ProcessState.TERMINATING,
        ProcessState.ERROR,
    },
    ProcessState.READY: {
        ProcessState.PROCESSING,
        ProcessState.TERMINATING,
        ProcessState.ERROR,
    },
    ProcessState.PROCESSING: {
        ProcessState.PAUSED,
        ProcessState.TERMINATING,
        ProcessState.ERROR,
    },
    ProcessState.PAUSED: {
        ProcessState.PROCESSING,
        ProcessState.TERMINATING,
        ProcessState.ERROR,
    },
    ProcessState.TERMINATING: {
        ProcessState.TERMINATED,
        ProcessState.ERROR,
    },
    ProcessState.TERMINATED: set(),
    ProcessState.ERROR: set(),
}


def can_transition(current: ProcessState, target: ProcessState) -> bool:
    return target in VALID_TRANSITIONS.get(current, set())


def validate_transition(current: ProcessState, target: ProcessState) -> None:
    """Validate a state transition. Raises ValueError if invalid."""
    allowed = VALID_TRANSITIONS.get(current, set())
    if target not in allowed:
        allowed_str = (
            ", ".join(sorted(s.value for s in allowed)) or "none (terminal)"
        )
        raise ValueError(
            f"Invalid state transition: {current.value} -> {target.value}. "
            f"Allowed from {current.value}: {allowed_str}"
        )
