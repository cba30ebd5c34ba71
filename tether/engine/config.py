"""Configuration loaded from environment variables.

All settings have sensible defaults. Override via TETHER_* env vars,
or with a YAML file (see yaml_config.py).
"""
from __future__ import annotations

import logging
import os
from dataclasses import dataclass

logger = logging.getLogger(__name__)

_TRUE_VALUES = {"1", "true", "yes", "on"}


@dataclass
class SessionConfig:
    """Timeouts and limits for one coordinated subprocess."""

    # Max wait for the tool's session-ready record after spawning.
    startup_timeout_seconds: float = 30.0
    # Wait between SIGTERM and SIGKILL when shutting the process down.
    terminate_grace_seconds: float = 5.0
    # Prompts that may wait behind the in-flight turn.
    turn_backlog_size: int = 8
    # Longest accepted stdout line. Tool output lines can carry whole
    # file contents, so this is far above asyncio's 64 KiB default.
    stream_limit_bytes: int = 16 * 1024 * 1024
    # Ask the child not to emit ANSI colour codes.
    disable_color: bool = True

    # Logging
    log_level: str = "INFO"

    @classmethod
    def from_env(cls) -> SessionConfig:
        """Load configuration from TETHER_* environment variables."""
        tether_vars = {
            k: v for k, v in os.environ.items() if k.startswith("TETHER_")
        }
        if tether_vars:
            logger.info(
                "SessionConfig.from_env: TETHER_* env overrides: %s",
                ", ".join(f"{k}={v}" for k, v in sorted(tether_vars.items())),
            )
        else:
            logger.debug("SessionConfig.from_env: no TETHER_* env vars set, using defaults")

        disable_color = os.getenv("TETHER_DISABLE_COLOR")
        config = cls(
            startup_timeout_seconds=float(os.getenv(
                "TETHER_STARTUP_TIMEOUT", str(cls.startup_timeout_seconds)
            )),
            terminate_grace_seconds=float(os.getenv(
                "TETHER_TERMINATE_GRACE", str(cls.terminate_grace_seconds)
            )),
            turn_backlog_size=int(os.getenv(
                "TETHER_TURN_BACKLOG", str(cls.turn_backlog_size)
            )),
            stream_limit_bytes=int(os.getenv(
                "TETHER_STREAM_LIMIT", str(cls.stream_limit_bytes)
            )),
            disable_color=(
                cls.disable_color
                if disable_color is None
                else disable_color.lower() in _TRUE_VALUES
            ),
            log_level=os.getenv("TETHER_LOG_LEVEL", cls.log_level),
        )
        config.validate()
        return config

    def validate(self) -> None:
        """Reject values the session cannot work with. Raises ValueError."""
        if self.startup_timeout_seconds <= 0:
            raise ValueError("startup_timeout_seconds must be > 0")
        if self.terminate_grace_seconds < 0:
            raise ValueError("terminate_grace_seconds must be >= 0")
        if self.turn_backlog_size < 0:
            raise ValueError("turn_backlog_size must be >= 0")
        if self.stream_limit_bytes < 1024:
            raise ValueError("stream_limit_bytes must be >= 1024")
