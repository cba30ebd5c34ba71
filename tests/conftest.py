import asyncio
import json
from typing import Any, Callable

import pytest

from tether.engine.config import SessionConfig
from tether.engine.spawn import SpawnSpec


class FakeStdin:
    """Collects written lines and hands each one to the process script."""

    def __init__(self, on_line: Callable[[str], None]) -> None:
        self.lines: list[str] = []
        self.closed = False
        self.fail_with: BaseException | None = None
        self.received = asyncio.Event()
        self._buffer = b""
        self._on_line = on_line

    def write(self, data: bytes) -> None:
        if self.fail_with is not None:
            raise self.fail_with
        if self.closed:
            raise BrokenPipeError("stdin closed")
        self._buffer += data
        while b"\n" in self._buffer:
            raw, self._buffer = self._buffer.split(b"\n", 1)
            line = raw.decode("utf-8")
            self.lines.append(line)
            self.received.set()
            self._on_line(line)

    async def drain(self) -> None:
        return None

    def close(self) -> None:
        self.closed = True

    def is_closing(self) -> bool:
        return self.closed


class FakeProcess:
    """In-memory stand-in for asyncio.subprocess.Process.

    ``script(prompt, proc)`` runs for every line written to stdin and
    answers through ``proc.emit``. With ``ignore_sigterm`` only kill()
    ends the process.
    """

    def __init__(
        self,
        script: Callable[[str, "FakeProcess"], None] | None = None,
        *,
        init_session_id: str | None = "S1",
        ignore_sigterm: bool = False,
        pid: int = 4242,
    ) -> None:
        self.stdout = asyncio.StreamReader()
        self.stderr = asyncio.StreamReader()
        self.stdin = FakeStdin(self._on_line)
        self.pid = pid
        self.returncode: int | None = None
        self.signals: list[str] = []
        self.killed_at: float | None = None
        self.ignore_sigterm = ignore_sigterm
        self._script = script
        self._exited = asyncio.Event()
        if init_session_id is not None:
            self.emit({"type": "system", "subtype": "init", "session_id": init_session_id})

    def emit(self, payload: dict[str, Any]) -> None:
        self.emit_line(json.dumps(payload))

    def emit_line(self, line: str) -> None:
        self.stdout.feed_data(line.encode("utf-8") + b"\n")

    def exit(self, code: int = 0) -> None:
        if self.returncode is not None:
            return
        self.returncode = code
        self.stdout.feed_eof()
        self.stderr.feed_eof()
        self._exited.set()

    async def wait(self) -> int:
        await self._exited.wait()
        assert self.returncode is not None
        return self.returncode

    def terminate(self) -> None:
        self.signals.append("SIGTERM")
        if not self.ignore_sigterm:
            self.exit(-15)

    def kill(self) -> None:
        self.signals.append("SIGKILL")
        self.killed_at = asyncio.get_running_loop().time()
        self.exit(-9)

    def send_signal(self, sig: int) -> None:
        self.signals.append(f"signal {sig}")

    def _on_line(self, prompt: str) -> None:
        if self._script is not None:
            self._script(prompt, self)


class FakeSpawner:
    """Spawner that builds a FakeProcess per call and remembers it."""

    def __init__(self, **process_kwargs: Any) -> None:
        self._process_kwargs = process_kwargs
        self.processes: list[FakeProcess] = []
        self.specs: list[SpawnSpec] = []

    async def __call__(self, spec: SpawnSpec, config: SessionConfig) -> FakeProcess:
        process = FakeProcess(**self._process_kwargs)
        self.processes.append(process)
        self.specs.append(spec)
        return process

    @property
    def process(self) -> FakeProcess:
        return self.processes[-1]


def echo_script(prompt: str, proc: FakeProcess) -> None:
    proc.emit({
        "type": "assistant",
        "message": {"content": [{"type": "text", "text": f"echo: {prompt}"}]},
    })
    proc.emit({"type": "result", "subtype": "success", "is_error": False, "num_turns": 1})


@pytest.fixture
def spawner_factory():
    """Build a FakeSpawner; defaults to an echoing tool announcing session S1."""

    def factory(**process_kwargs: Any) -> FakeSpawner:
        process_kwargs.setdefault("script", echo_script)
        return FakeSpawner(**process_kwargs)

    return factory


@pytest.fixture
def fast_config() -> SessionConfig:
    return SessionConfig(startup_timeout_seconds=1.0, terminate_grace_seconds=0.2)


@pytest.fixture
def fake_spec() -> SpawnSpec:
    return SpawnSpec(executable="fake-cli", argv=["--output-format", "stream-json"])
