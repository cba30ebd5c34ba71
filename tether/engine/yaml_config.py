"""YAML configuration loader.

One file describes both the session tuning and the process to run.
Anything left out falls back to SessionConfig.from_env().

Example YAML:
    session:
      startup_timeout_seconds: 45
      terminate_grace_seconds: 3
      turn_backlog_size: 4
      log_level: DEBUG

    process:
      executable: claude
      args: ["--print", "--input-format", "text",
             "--output-format", "stream-json", "--verbose"]
      cwd: /path/to/project
      env:
        ANTHROPIC_API_KEY: "${ANTHROPIC_API_KEY}"
"""
from __future__ import annotations

import logging
import os
from dataclasses import dataclass, fields
from pathlib import Path
from typing import Any

import yaml

from .config import SessionConfig
from .errors import ConfigurationError
from .spawn import SpawnSpec

logger = logging.getLogger(__name__)


@dataclass
class TetherConfig:
    """Complete parsed YAML configuration."""
    session: SessionConfig
    spawn: SpawnSpec | None = None


def _expand_env(value: str) -> str:
    return os.path.expandvars(value)


def _parse_session(raw: Any, base: SessionConfig) -> SessionConfig:
    if raw is None:
        return base
    if not isinstance(raw, dict):
        raise ConfigurationError("'session' must be a mapping")

    known = {f.name: f for f in fields(SessionConfig)}
    values: dict[str, Any] = {}
    for key, value in raw.items():
        spec_field = known.get(key)
        if spec_field is None:
            logger.warning("Ignoring unknown session setting: %s", key)
            continue
        default = getattr(base, key)
        try:
            if isinstance(default, bool):
                values[key] = (
                    value if isinstance(value, bool)
                    else str(value).lower() in {"1", "true", "yes", "on"}
                )
            elif isinstance(default, (int, float)):
                values[key] = type(default)(value)
            else:
                values[key] = str(value)
        except (TypeError, ValueError) as exc:
            raise ConfigurationError(
                f"Invalid value for session.{key}: {value!r}"
            ) from exc

    merged = SessionConfig(**{
        f.name: values.get(f.name, getattr(base, f.name)) for f in fields(SessionConfig)
    })
    try:
        merged.validate()
    except ValueError as exc:
        raise ConfigurationError(str(exc)) from exc
    return merged


def _parse_process(raw: Any, config_dir: Path) -> SpawnSpec | None:
    if raw is None:
        return None
    if not isinstance(raw, dict):
        raise ConfigurationError("'process' must be a mapping")

    executable = raw.get("executable")
    if not executable or not isinstance(executable, str):
        raise ConfigurationError("process.executable is required")

    args = raw.get("args", [])
    if not isinstance(args, list):
        raise ConfigurationError("process.args must be a list")

    cwd = raw.get("cwd")
    if cwd is not None:
        cwd_path = Path(_expand_env(str(cwd))).expanduser()
        if not cwd_path.is_absolute():
            cwd_path = config_dir / cwd_path
        cwd = str(cwd_path)

    env_raw = raw.get("env") or {}
    if not isinstance(env_raw, dict):
        raise ConfigurationError("process.env must be a mapping")
    env = {str(k): _expand_env(str(v)) for k, v in env_raw.items()}

    return SpawnSpec(
        executable=_expand_env(executable),
        argv=[str(a) for a in args],
        cwd=cwd,
        env=env,
    )


def load_yaml_config(
    path: str | Path,
    *,
    base: SessionConfig | None = None,
) -> TetherConfig:
    """Load and validate a YAML configuration file.

    Raises ConfigurationError on unreadable or malformed files.
    """
    config_path = Path(path).expanduser()
    try:
        text = config_path.read_text(encoding="utf-8")
    except OSError as exc:
        raise ConfigurationError(f"Cannot read config file {config_path}: {exc}") from exc

    try:
        raw = yaml.safe_load(text) or {}
    except yaml.YAMLError as exc:
        raise ConfigurationError(f"Invalid YAML in {config_path}: {exc}") from exc
    if not isinstance(raw, dict):
        raise ConfigurationError(f"Top level of {config_path} must be a mapping")

    for key in raw:
        if key not in ("session", "process"):
            logger.warning("Ignoring unknown top-level config section: %s", key)

    session = _parse_session(raw.get("session"), base or SessionConfig.from_env())
    spawn = _parse_process(raw.get("process"), config_path.parent.resolve())
    logger.info(
        "Loaded config %s (process=%s)",
        config_path, spawn.executable if spawn else "<none>",
    )
    return TetherConfig(session=session, spawn=spawn)
