"""Spawning the wrapped tool.

The session core never builds command lines itself: it receives a
SpawnSpec (executable, argv, cwd, env) and a spawner that turns it
into a ProcessHandle. The default spawner uses
asyncio.create_subprocess_exec with every stdio stream piped and
stdin left open for the lifetime of the session.
"""
from __future__ import annotations

import asyncio
import logging
import os
import shutil
import signal
import sys
from collections.abc import Awaitable, Callable, Iterable, Mapping
from dataclasses import dataclass, field
from pathlib import Path
from typing import Protocol

from .config import SessionConfig
from .errors import SpawnFailureError

logger = logging.getLogger(__name__)


class InputStream(Protocol):
    def write(self, data: bytes) -> None: ...

    async def drain(self) -> None: ...

    def close(self) -> None: ...

    def is_closing(self) -> bool: ...


class OutputStream(Protocol):
    async def readline(self) -> bytes: ...


class ProcessHandle(Protocol):
    """What the session needs from a running subprocess."""

    stdin: InputStream | None
    stdout: OutputStream | None
    stderr: OutputStream | None

    @property
    def pid(self) -> int | None: ...

    @property
    def returncode(self) -> int | None: ...

    async def wait(self) -> int: ...

    def terminate(self) -> None: ...

    def kill(self) -> None: ...

    def send_signal(self, sig: int) -> None: ...


@dataclass
class SpawnSpec:
    """Everything needed to launch the wrapped tool."""
    executable: str
    argv: list[str] = field(default_factory=list)
    cwd: str | None = None
    env: dict[str, str] = field(default_factory=dict)

    def build_env(self, *, disable_color: bool = True) -> dict[str, str]:
        """Inherit the parent environment, then apply overrides."""
        env = os.environ.copy()
        if disable_color:
            env["FORCE_COLOR"] = "0"
            env["NO_COLOR"] = "1"
        env.update(self.env)
        return env

    def describe(self) -> str:
        return " ".join([self.executable, *self.argv])


Spawner = Callable[[SpawnSpec, SessionConfig], Awaitable[ProcessHandle]]


class SubprocessHandle:
    """ProcessHandle over asyncio.subprocess.Process.

    The child runs in its own process group so termination signals
    reach helpers it started as well.
    """

    def __init__(self, proc: asyncio.subprocess.Process) -> None:
        self._proc = proc
        self.stdin = proc.stdin
        self.stdout = proc.stdout
        self.stderr = proc.stderr

    @property
    def pid(self) -> int | None:
        return self._proc.pid

    @property
    def returncode(self) -> int | None:
        return self._proc.returncode

    async def wait(self) -> int:
        return await self._proc.wait()

    def send_signal(self, sig: int) -> None:
        if self._proc.returncode is not None:
            return
        try:
            if hasattr(os, "killpg"):
                os.killpg(self._proc.pid, sig)
            else:
                self._proc.send_signal(sig)
        except ProcessLookupError:
            pass

    def terminate(self) -> None:
        self.send_signal(signal.SIGTERM)

    def kill(self) -> None:
        if sys.platform == "win32":
            self._proc.kill()
            return
        self.send_signal(signal.SIGKILL)


async def spawn_process(spec: SpawnSpec, config: SessionConfig) -> ProcessHandle:
    """Default spawner. Raises SpawnFailureError."""
    try:
        # Argument vector, no shell.
        proc = await asyncio.create_subprocess_exec(
            spec.executable,
            *spec.argv,
            stdin=asyncio.subprocess.PIPE,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
            cwd=spec.cwd,
            env=spec.build_env(disable_color=config.disable_color),
            limit=config.stream_limit_bytes,
            start_new_session=hasattr(os, "killpg"),
        )
    except FileNotFoundError as exc:
        raise SpawnFailureError(spec.executable, "executable not found") from exc
    except PermissionError as exc:
        raise SpawnFailureError(spec.executable, "permission denied") from exc
    except OSError as exc:
        raise SpawnFailureError(spec.executable, str(exc)) from exc

    logger.info("Started %s (pid=%d)", spec.executable, proc.pid)
    return SubprocessHandle(proc)


def _is_executable(path: Path) -> bool:
    return path.is_file() and os.access(path, os.X_OK)


def _well_known_locations(command: str) -> list[Path]:
    home = Path.home()
    paths = [
        home / ".claude" / "local" / command,
        home / ".claude" / "bin" / command,
        home / ".local" / "bin" / command,
        home / "bin" / command,
    ]
    if sys.platform != "win32":
        paths.extend([
            Path("/usr/local/bin") / command,
            Path("/usr/bin") / command,
            Path("/opt/homebrew/bin") / command,
        ])
    return paths


def find_executable(
    command: str,
    extra_paths: Iterable[str | os.PathLike[str]] = (),
    *,
    env: Mapping[str, str] | None = None,
) -> str:
    """Resolve a tool binary to an absolute path.

    Tries, in order: the command itself when it is a path, PATH lookup,
    caller-supplied locations, then common per-user and system install
    directories. Raises SpawnFailureError when nothing matches.
    """
    if not command:
        raise SpawnFailureError(command, "no executable configured")

    candidate = Path(command).expanduser()
    if candidate.parent != Path("."):
        if _is_executable(candidate):
            return str(candidate)
        raise SpawnFailureError(command, "not an executable file")

    search_path = (env or os.environ).get("PATH")
    found = shutil.which(command, path=search_path)
    if found:
        return found

    for location in [*map(Path, extra_paths), *_well_known_locations(command)]:
        location = location.expanduser()
        if location.is_dir():
            location = location / command
        if _is_executable(location):
            logger.debug("Resolved %s via fallback location %s", command, location)
            return str(location)

    raise SpawnFailureError(command, "not found on PATH or in known install locations")
