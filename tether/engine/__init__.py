"""Tether engine: turn-by-turn coordination of a long-lived subprocess."""
from .models import (
    LIVE_STATES,
    ProcessState,
    QueryResult,
    SessionSnapshot,
    Turn,
)
from .config import SessionConfig
from .errors import (
    ConfigurationError,
    FeederStateError,
    FeederTerminatedError,
    InitializationTimeoutError,
    MalformedOutputError,
    PrematureExitError,
    RendezvousStateError,
    SessionNotAliveError,
    SessionNotStartedError,
    SessionStateError,
    SpawnFailureError,
    TetherError,
    TurnBacklogFullError,
    TurnCancelledError,
    UpstreamError,
)
from .records import (
    Content,
    OutputRecord,
    SessionInit,
    TurnResult,
    UnknownRecord,
    UpstreamErrorRecord,
    parse_record,
)
from .events import (
    Failed,
    LoggingObserver,
    RecordObserved,
    SessionEvent,
    SessionEventBus,
    SessionReady,
    StateChanged,
)
from .rendezvous import Rendezvous, RendezvousStatus
from .feeder import TurnFeeder
from .spawn import ProcessHandle, SpawnSpec, Spawner, find_executable, spawn_process
from .process_session import ProcessSession
from .client import SessionClient

__all__ = [
    # Models
    "LIVE_STATES",
    "ProcessState",
    "QueryResult",
    "SessionSnapshot",
    "Turn",
    # Config
    "SessionConfig",
    "TetherConfig",
    "load_yaml_config",
    # Errors
    "ConfigurationError",
    "FeederStateError",
    "FeederTerminatedError",
    "InitializationTimeoutError",
    "MalformedOutputError",
    "PrematureExitError",
    "RendezvousStateError",
    "SessionNotAliveError",
    "SessionNotStartedError",
    "SessionStateError",
    "SpawnFailureError",
    "TetherError",
    "TurnBacklogFullError",
    "TurnCancelledError",
    "UpstreamError",
    # Records
    "Content",
    "OutputRecord",
    "SessionInit",
    "TurnResult",
    "UnknownRecord",
    "UpstreamErrorRecord",
    "parse_record",
    # Events
    "Failed",
    "LoggingObserver",
    "RecordObserved",
    "SessionEvent",
    "SessionEventBus",
    "SessionReady",
    "StateChanged",
    # Core
    "Rendezvous",
    "RendezvousStatus",
    "TurnFeeder",
    "ProcessHandle",
    "SpawnSpec",
    "Spawner",
    "find_executable",
    "spawn_process",
    "ProcessSession",
    "SessionClient",
]


def __getattr__(name: str):
    """Lazy import for the YAML loader so PyYAML loads only when used."""
    if name in ("TetherConfig", "load_yaml_config"):
        from . import yaml_config
        return getattr(yaml_config, name)
    raise AttributeError(f"module {__name__!r} has no attribute {name!r}")
