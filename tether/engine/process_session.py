"""One long-lived subprocess driven turn by turn.

A ProcessSession spawns the wrapped tool once and keeps its stdin
open. Two tasks cooperate for the lifetime of the process:

- the writer iterates TurnFeeder.produce_turns(), writes each prompt
  as one line, then waits until the turn is over before asking for
  the next one;
- the reader classifies stdout lines into records, publishes them,
  and treats a result record as the end of the running turn.

They share nothing but the process state and the event bus, both
touched only from the event loop. A third task drains stderr into
the log so the child never blocks on a full pipe.

State Diagram: see lifecycle.py.
"""
from __future__ import annotations

import asyncio
import logging
from collections.abc import AsyncIterator, Callable, Iterable

from .config import SessionConfig
from .errors import (
    MalformedOutputError,
    PrematureExitError,
    SessionStateError,
    SpawnFailureError,
    TurnCancelledError,
    UpstreamError,
)
from .events import (
    EventHandler,
    Failed,
    RecordObserved,
    SessionEvent,
    SessionEventBus,
    SessionReady,
    StateChanged,
)
from .feeder import TurnFeeder
from .lifecycle import validate_transition
from .models import LIVE_STATES, ProcessState, SessionSnapshot
from .records import (
    OutputRecord,
    SessionInit,
    TurnResult,
    UpstreamErrorRecord,
    parse_record,
)
from .spawn import ProcessHandle, SpawnSpec, Spawner, spawn_process

logger = logging.getLogger(__name__)


class ProcessSession:
    """Owns one subprocess and the two loops that talk to it.

    Not reusable: once the session reaches TERMINATED or ERROR a new
    ProcessSession (and TurnFeeder) must be built.
    """

    def __init__(
        self,
        spec: SpawnSpec,
        feeder: TurnFeeder,
        *,
        config: SessionConfig | None = None,
        spawner: Spawner | None = None,
        observers: Iterable[EventHandler] = (),
        name: str = "session",
    ) -> None:
        self._spec = spec
        self._feeder = feeder
        self._config = config or SessionConfig()
        self._spawner = spawner or spawn_process
        self._name = name
        self._bus = SessionEventBus()
        for observer in observers:
            self._bus.subscribe(observer)

        self._state = ProcessState.NOT_STARTED
        self._process: ProcessHandle | None = None
        self._session_id: str | None = None
        self._completed_turns = 0
        self._exit_code: int | None = None
        self._released = False

        # Set whenever no turn is running; the writer waits on it.
        self._turn_idle = asyncio.Event()
        self._turn_idle.set()
        self._shutdown_lock = asyncio.Lock()

        self._writer_task: asyncio.Task | None = None
        self._reader_task: asyncio.Task | None = None
        self._stderr_task: asyncio.Task | None = None

    # ── Accessors ──

    @property
    def name(self) -> str:
        return self._name

    @property
    def state(self) -> ProcessState:
        return self._state

    @property
    def session_id(self) -> str | None:
        return self._session_id

    @property
    def completed_turns(self) -> int:
        return self._completed_turns

    @property
    def pid(self) -> int | None:
        return self._process.pid if self._process is not None else None

    @property
    def exit_code(self) -> int | None:
        return self._exit_code

    def is_alive(self) -> bool:
        """True while the process runs and the session can take turns."""
        return (
            self._state in LIVE_STATES
            and self._process is not None
            and self._process.returncode is None
        )

    def snapshot(self) -> SessionSnapshot:
        return SessionSnapshot(
            session_id=self._session_id,
            process_state=self._state,
            is_alive=self.is_alive(),
            completed_turns=self._completed_turns,
        )

    def subscribe(self, handler: EventHandler) -> Callable[[], None]:
        """Register an event handler. Returns the unsubscribe callable."""
        return self._bus.subscribe(handler)

    def events(self) -> AsyncIterator[SessionEvent]:
        """Async stream of events from the first iteration onward."""
        return self._bus.stream()

    # ── Lifecycle ──

    async def start(self) -> None:
        """Spawn the process and launch the writer and reader tasks.

        Raises SpawnFailureError if the executable cannot be started.
        """
        if self._state is not ProcessState.NOT_STARTED:
            raise SessionStateError(
                f"Process already started (state={self._state.value})"
            )
        self._set_state(ProcessState.INITIALIZING)
        logger.info("[%s] Starting %s", self._name, self._spec.describe())

        try:
            process = await self._spawner(self._spec, self._config)
        except SpawnFailureError as exc:
            self._fail(exc)
            raise
        except OSError as exc:
            error = SpawnFailureError(self._spec.executable, str(exc))
            self._fail(error)
            raise error from exc

        self._process = process
        if process.stdin is None or process.stdout is None:
            error = SpawnFailureError(
                self._spec.executable, "stdin/stdout are not piped",
            )
            self._fail(error)
            await self._release_process()
            raise error

        self._reader_task = asyncio.create_task(
            self._read_loop(), name=f"{self._name}-reader",
        )
        self._writer_task = asyncio.create_task(
            self._write_loop(), name=f"{self._name}-writer",
        )
        if process.stderr is not None:
            self._stderr_task = asyncio.create_task(
                self._drain_stderr(), name=f"{self._name}-stderr",
            )

    async def terminate(self) -> None:
        """Close stdin, SIGTERM, wait, then SIGKILL. Idempotent."""
        if self._state in (ProcessState.NOT_STARTED, ProcessState.TERMINATED):
            return
        async with self._shutdown_lock:
            if self._state in (ProcessState.NOT_STARTED, ProcessState.TERMINATED):
                return
            if self._state is not ProcessState.ERROR:
                self._set_state(ProcessState.TERMINATING)
            self._turn_idle.set()
            await self._release_process()
            if self._state is ProcessState.TERMINATING:
                self._set_state(ProcessState.TERMINATED)
            self._bus.close()

    async def cancel(self, reason: str = "cancelled") -> None:
        """Abort the running turn (if any) and shut the process down."""
        if self._state is ProcessState.PROCESSING:
            self._bus.publish(Failed(error=TurnCancelledError(reason)))
        await self.terminate()

    async def abort(self, error: BaseException) -> None:
        """Fail the session with ``error`` and release the process."""
        self._fail(error)
        async with self._shutdown_lock:
            await self._release_process()
            self._bus.close()

    # ── State handling ──

    def _set_state(self, target: ProcessState) -> None:
        if target is self._state:
            return
        validate_transition(self._state, target)
        previous = self._state
        self._state = target
        self._bus.publish(StateChanged(state=target, previous=previous))

    def _fail(self, error: BaseException) -> None:
        """Publish ``error`` and move to ERROR, unless already shutting down."""
        if self._state.is_terminal or self._state is ProcessState.TERMINATING:
            logger.debug(
                "[%s] Ignoring failure in state %s: %s",
                self._name, self._state.value, error,
            )
            return
        self._bus.publish(Failed(error=error))
        self._set_state(ProcessState.ERROR)
        self._turn_idle.set()

    # ── Writer ──

    async def _write_loop(self) -> None:
        turns = self._feeder.produce_turns()
        try:
            async for turn in turns:
                process = self._process
                if not self.is_alive() or process is None or process.stdin is None:
                    logger.info(
                        "[%s] Process not alive, dropping turn %d",
                        self._name, turn.sequence,
                    )
                    break

                self._turn_idle.clear()
                self._set_state(ProcessState.PROCESSING)
                logger.debug(
                    "[%s] Writing turn %d: %s",
                    self._name, turn.sequence,
                    turn.prompt[:100] + ("..." if len(turn.prompt) > 100 else ""),
                )
                process.stdin.write(turn.prompt.rstrip("\n").encode("utf-8") + b"\n")
                await process.stdin.drain()

                await self._turn_idle.wait()
                if not self._state.is_idle:
                    break
        except (BrokenPipeError, ConnectionResetError) as exc:
            logger.warning("[%s] stdin closed by subprocess: %s", self._name, exc)
            await self._await_reader_verdict()
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            logger.exception("[%s] Error in writer loop", self._name)
            self._fail(exc)
        finally:
            await turns.aclose()
        logger.debug("[%s] Writer loop finished", self._name)

    async def _await_reader_verdict(self) -> None:
        """After a broken pipe, let the reader classify the exit."""
        if self._reader_task is not None and not self._reader_task.done():
            await asyncio.wait(
                {self._reader_task}, timeout=self._config.terminate_grace_seconds,
            )
        if self._state in LIVE_STATES:
            returncode = self._process.returncode if self._process else None
            self._fail(PrematureExitError(
                returncode, turn_pending=self._state is ProcessState.PROCESSING,
            ))

    # ── Reader ──

    async def _read_loop(self) -> None:
        assert self._process is not None and self._process.stdout is not None
        stdout = self._process.stdout
        try:
            while True:
                try:
                    raw = await stdout.readline()
                except ValueError as exc:
                    # Line over stream_limit_bytes; asyncio already discarded it.
                    logger.warning("[%s] Skipping oversized output line: %s", self._name, exc)
                    continue
                if not raw:
                    break
                line = raw.decode("utf-8", errors="replace").strip()
                if not line:
                    continue
                try:
                    record = parse_record(line)
                except MalformedOutputError as exc:
                    logger.warning("[%s] %s", self._name, exc)
                    continue
                self._handle_record(record)
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            logger.exception("[%s] Error reading output", self._name)
            self._fail(exc)
            return
        await self._on_stdout_closed()

    def _handle_record(self, record: OutputRecord) -> None:
        self._bus.publish(RecordObserved(record=record))

        if isinstance(record, SessionInit):
            if record.session_id != self._session_id:
                self._session_id = record.session_id
                self._bus.publish(SessionReady(session_id=record.session_id))
            if self._state is ProcessState.INITIALIZING:
                self._set_state(ProcessState.READY)
        elif isinstance(record, TurnResult):
            if self._state is ProcessState.PROCESSING:
                self._completed_turns += 1
                self._set_state(ProcessState.PAUSED)
                self._turn_idle.set()
            else:
                logger.warning(
                    "[%s] Result record outside a turn (state=%s)",
                    self._name, self._state.value,
                )
        elif isinstance(record, UpstreamErrorRecord):
            self._bus.publish(
                Failed(error=UpstreamError(record.message, record.code))
            )

    async def _on_stdout_closed(self) -> None:
        assert self._process is not None
        returncode = await self._process.wait()
        self._exit_code = returncode
        if self._state is ProcessState.TERMINATING or self._state.is_terminal:
            return

        turn_pending = self._state is ProcessState.PROCESSING
        if turn_pending or returncode != 0 or self._state is ProcessState.INITIALIZING:
            self._fail(PrematureExitError(returncode, turn_pending=turn_pending))
            return

        logger.info("[%s] Process exited cleanly between turns", self._name)
        async with self._shutdown_lock:
            if self._state is ProcessState.TERMINATING or self._state.is_terminal:
                return
            self._set_state(ProcessState.TERMINATING)
            self._turn_idle.set()
            await self._release_process()
            self._set_state(ProcessState.TERMINATED)
            self._bus.close()

    async def _drain_stderr(self) -> None:
        assert self._process is not None and self._process.stderr is not None
        stderr = self._process.stderr
        while True:
            try:
                raw = await stderr.readline()
            except ValueError:
                continue
            except OSError as exc:
                logger.debug("[%s] stderr closed: %s", self._name, exc)
                return
            if not raw:
                return
            text = raw.decode("utf-8", errors="replace").rstrip()
            if text:
                logger.debug("[%s] stderr: %s", self._name, text)

    # ── Shutdown ──

    def _close_stdin(self) -> None:
        stdin = self._process.stdin if self._process is not None else None
        if stdin is None or stdin.is_closing():
            return
        try:
            stdin.close()
        except OSError as exc:
            logger.debug("[%s] Closing stdin failed: %s", self._name, exc)

    async def _release_process(self) -> None:
        """Stop the writer, then the process, then collect the reader."""
        process = self._process
        if process is None or self._released:
            return
        self._released = True
        grace = max(0.0, self._config.terminate_grace_seconds)

        await self._cancel_task(self._writer_task)
        self._close_stdin()

        if process.returncode is None:
            try:
                process.terminate()
            except ProcessLookupError:
                pass
            try:
                await asyncio.wait_for(process.wait(), timeout=grace)
            except asyncio.TimeoutError:
                logger.warning(
                    "[%s] Process %s still running %.1fs after SIGTERM; killing",
                    self._name, process.pid, grace,
                )
                try:
                    process.kill()
                except ProcessLookupError:
                    pass
                await process.wait()

        await self._finish_task(self._reader_task, grace)
        await self._finish_task(self._stderr_task, grace)
        self._exit_code = process.returncode
        logger.info(
            "[%s] Process stopped (pid=%s, returncode=%s)",
            self._name, process.pid, process.returncode,
        )

    @staticmethod
    async def _cancel_task(task: asyncio.Task | None) -> None:
        if task is None or task.done() or task is asyncio.current_task():
            return
        task.cancel()
        await asyncio.gather(task, return_exceptions=True)

    async def _finish_task(self, task: asyncio.Task | None, timeout: float) -> None:
        """Give a task ``timeout`` seconds to finish on its own, then cancel it."""
        if task is None or task.done() or task is asyncio.current_task():
            return
        await asyncio.wait({task}, timeout=timeout)
        await self._cancel_task(task)

    def __repr__(self) -> str:
        return (
            f"<ProcessSession name={self._name} state={self._state.value} "
            f"pid={self.pid} session_id={self._session_id}>"
        )
