"""Core data models for the session coordinator.

Enums and dataclasses shared by the feeder, the process session and
the client. Single source of truth to avoid circular imports.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from .records import OutputRecord


class ProcessState(str, Enum):
    """Process lifecycle states. See lifecycle.py for transition rules."""
    NOT_STARTED = "not_started"
    INITIALIZING = "initializing"
    READY = "ready"
    PROCESSING = "processing"
    PAUSED = "paused"
    TERMINATING = "terminating"
    TERMINATED = "terminated"
    ERROR = "error"

    @property
    def is_terminal(self) -> bool:
        return self in (ProcessState.TERMINATED, ProcessState.ERROR)

    @property
    def is_idle(self) -> bool:
        """Between turns: a new prompt may be written."""
        return self in (ProcessState.READY, ProcessState.PAUSED)


LIVE_STATES = frozenset({
    ProcessState.INITIALIZING,
    ProcessState.READY,
    ProcessState.PROCESSING,
    ProcessState.PAUSED,
})


@dataclass(frozen=True)
class Turn:
    """One prompt handed to the subprocess."""
    sequence: int
    prompt: str


@dataclass(frozen=True)
class SessionSnapshot:
    """Read-only projection of a session for callers."""
    session_id: str | None
    process_state: ProcessState
    is_alive: bool
    completed_turns: int


@dataclass
class QueryResult:
    """Records collected for one turn plus the session state after it."""
    records: list[OutputRecord] = field(default_factory=list)
    snapshot: SessionSnapshot | None = None

    def of_kind(self, kind: str) -> list[OutputRecord]:
        return [r for r in self.records if r.kind == kind]
