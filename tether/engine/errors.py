"""Exception hierarchy for the session coordinator.

Specific exceptions for each failure mode. Loop-internal failures are
published as ``Failed`` events carrying one of these, and the client
re-raises them to the caller whose turn they interrupted.
"""
from __future__ import annotations


class TetherError(Exception):
    """Base exception for all coordinator errors."""


class ConfigurationError(TetherError):
    """Configuration file or environment could not be loaded."""


class SpawnFailureError(TetherError):
    """The subprocess could not be started (missing or not executable)."""
    def __init__(self, executable: str, reason: str):
        self.executable = executable
        self.reason = reason
        super().__init__(f"Failed to spawn {executable}: {reason}")


class MalformedOutputError(TetherError):
    """A line on the subprocess's stdout is not a JSON object."""
    def __init__(self, line: str, reason: str):
        self.line = line
        self.reason = reason
        preview = line if len(line) <= 120 else line[:120] + "..."
        super().__init__(f"Malformed output line ({reason}): {preview}")


class UpstreamError(TetherError):
    """The wrapped tool reported an error record."""
    def __init__(self, message: str, code: str | None = None):
        self.message = message
        self.code = code
        if code:
            super().__init__(f"Upstream error [{code}]: {message}")
        else:
            super().__init__(f"Upstream error: {message}")


class PrematureExitError(TetherError):
    """The subprocess exited while the session still needed it."""
    def __init__(self, returncode: int | None, turn_pending: bool):
        self.returncode = returncode
        self.turn_pending = turn_pending
        where = "while a turn was pending" if turn_pending else "unexpectedly"
        super().__init__(
            f"Subprocess exited {where} (returncode={returncode})"
        )


class TurnCancelledError(TetherError):
    """The turn was aborted before the subprocess finished it."""
    def __init__(self, reason: str = "cancelled"):
        self.reason = reason
        super().__init__(f"Turn cancelled: {reason}")


class InitializationTimeoutError(TetherError):
    """No session-ready signal arrived within the startup window."""
    def __init__(self, timeout_seconds: float):
        self.timeout_seconds = timeout_seconds
        super().__init__(
            f"Session did not become ready within {timeout_seconds}s"
        )


class SessionStateError(TetherError):
    """Operation is not valid in the session's current state."""


class SessionNotStartedError(SessionStateError):
    """query() was called before start()."""
    def __init__(self) -> None:
        super().__init__("Client not started. Call start() first.")


class SessionNotAliveError(SessionStateError):
    """The subprocess is no longer running."""
    def __init__(self, state: str):
        self.state = state
        super().__init__(f"Process is not alive (state={state})")


class RendezvousStateError(TetherError):
    """A rendezvous slot was resolved or consumed twice."""


class FeederStateError(TetherError):
    """The turn sequence was started twice."""


class FeederTerminatedError(TetherError):
    """The turn feeder has been terminated."""
    def __init__(self) -> None:
        super().__init__("Turn feeder terminated")


class TurnBacklogFullError(TetherError):
    """Too many prompts were submitted ahead of the running turn."""
    def __init__(self, capacity: int):
        self.capacity = capacity
        super().__init__(
            f"Turn backlog is full ({capacity} prompts waiting)"
        )
