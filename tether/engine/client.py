"""Caller-facing client for a persistent subprocess session.

SessionClient starts one ProcessSession, turns each query() into a
turn on the session's TurnFeeder and resolves it when the session
reports the turn finished.

Example:
    spec = SpawnSpec(executable="claude",
                     argv=["--print", "--output-format", "stream-json"])
    async with SessionClient(spec) as client:
        first = await client.query("List files")
        second = await client.query("Read package.json")

The process, and with it the conversation, stays alive between the
two queries. That is all it buys: the wrapped tool's own response
cache is scoped to its backend, not to this process, so keeping the
process alive is not a performance optimisation.
"""
from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable
from dataclasses import dataclass, field

from .config import SessionConfig
from .errors import (
    InitializationTimeoutError,
    PrematureExitError,
    SessionNotAliveError,
    SessionNotStartedError,
    SessionStateError,
    TurnCancelledError,
)
from .events import (
    EventHandler,
    Failed,
    LoggingObserver,
    RecordObserved,
    SessionEvent,
    SessionReady,
    StateChanged,
)
from .feeder import TurnFeeder
from .models import ProcessState, QueryResult, SessionSnapshot
from .process_session import ProcessSession
from .records import OutputRecord
from .spawn import SpawnSpec, Spawner

logger = logging.getLogger(__name__)


@dataclass
class _PendingTurn:
    """Bookkeeping for one submitted prompt."""
    prompt: str
    future: asyncio.Future[list[OutputRecord]]
    records: list[OutputRecord] = field(default_factory=list)
    finished: asyncio.Event = field(default_factory=asyncio.Event)

    def resolve(self) -> None:
        if not self.future.done():
            self.future.set_result(list(self.records))
        self.finished.set()

    def reject(self, error: BaseException) -> None:
        if not self.future.done():
            self.future.set_exception(error)

    def close(self, error: BaseException) -> None:
        """Reject (unless already settled) and mark the turn over."""
        self.reject(error)
        self.finished.set()


class SessionClient:
    """Submit-and-await API over one long-lived subprocess."""

    def __init__(
        self,
        spec: SpawnSpec,
        *,
        config: SessionConfig | None = None,
        spawner: Spawner | None = None,
        observers: list[EventHandler] | None = None,
        name: str = "session",
    ) -> None:
        self._spec = spec
        self._config = config or SessionConfig()
        self._spawner = spawner
        self._observers = list(observers or [])
        self._name = name

        self._session: ProcessSession | None = None
        self._feeder: TurnFeeder | None = None
        self._unsubscribe: Callable[[], None] | None = None
        self._current: _PendingTurn | None = None
        self._ready: asyncio.Future[str] | None = None
        self._query_lock = asyncio.Lock()
        self._query_count = 0
        # Final state of the last session, reported after stop().
        self._last_state = ProcessState.NOT_STARTED

    # ── Lifecycle ──

    async def start(self, seed_prompt: str | None = None) -> SessionSnapshot:
        """Spawn the process and wait until it reports a session id.

        Args:
            seed_prompt: Optional first prompt, sent immediately. Some
                tools only announce their session once they have
                received input.

        Raises:
            SpawnFailureError: the executable could not be started.
            InitializationTimeoutError: no session-ready record within
                ``config.startup_timeout_seconds``. The session is
                discarded; call start() again for a fresh one.
        """
        if self._session is not None:
            raise SessionStateError("Client already started")

        loop = asyncio.get_running_loop()
        self._ready = loop.create_future()
        self._feeder = TurnFeeder(backlog_size=self._config.turn_backlog_size)
        self._session = ProcessSession(
            self._spec,
            self._feeder,
            config=self._config,
            spawner=self._spawner,
            observers=[LoggingObserver(self._name), *self._observers],
            name=self._name,
        )
        self._unsubscribe = self._session.subscribe(self._handle_event)

        try:
            await self._session.start()
        except BaseException:
            self._reset()
            raise

        if seed_prompt:
            self._current = _PendingTurn(seed_prompt, loop.create_future())
            # Nobody awaits the seed turn's outcome.
            self._current.future.add_done_callback(_consume_exception)
            self._feeder.submit(seed_prompt)

        timeout = self._config.startup_timeout_seconds
        try:
            await asyncio.wait_for(self._ready, timeout=timeout)
        except asyncio.TimeoutError:
            error = InitializationTimeoutError(timeout)
            await self._session.abort(error)
            self._reset()
            raise error from None
        except BaseException:
            await self.stop()
            raise

        return self.get_state()

    async def stop(self) -> None:
        """Terminate the feeder and the process. Idempotent."""
        if self._feeder is not None:
            self._feeder.terminate()
        if self._session is not None:
            await self._session.terminate()
        self._reset()

    async def cancel(self, reason: str = "cancelled by caller") -> None:
        """Reject the in-flight query and kill the process."""
        if self._current is not None:
            self._current.close(TurnCancelledError(reason))
        if self._feeder is not None:
            self._feeder.terminate()
        if self._session is not None:
            await self._session.cancel(reason)
        self._reset()

    def _reset(self) -> None:
        if self._feeder is not None:
            self._feeder.terminate()
        if self._unsubscribe is not None:
            self._unsubscribe()
            self._unsubscribe = None
        if self._current is not None:
            self._current.close(TurnCancelledError("session stopped"))
            self._current = None
        if self._ready is not None and not self._ready.done():
            self._ready.cancel()
        self._ready = None
        if self._session is not None:
            self._last_state = self._session.state
        self._session = None
        self._feeder = None
        self._query_count = 0

    async def __aenter__(self) -> SessionClient:
        await self.start()
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.stop()

    # ── Queries ──

    def is_alive(self) -> bool:
        return self._session is not None and self._session.is_alive()

    @property
    def session_id(self) -> str | None:
        return self._session.session_id if self._session is not None else None

    @property
    def query_count(self) -> int:
        """Queries submitted since start()."""
        return self._query_count

    def get_state(self) -> SessionSnapshot:
        if self._session is None:
            return SessionSnapshot(
                session_id=None,
                process_state=self._last_state,
                is_alive=False,
                completed_turns=0,
            )
        return self._session.snapshot()

    async def query(self, prompt: str) -> QueryResult:
        """Send ``prompt`` as the next turn and wait for its records.

        Concurrent calls are serialized: each waits for the turn ahead
        of it to finish before submitting.

        Raises:
            SessionNotStartedError / SessionNotAliveError: no usable
                session.
            UpstreamError: the tool reported an error during the turn.
            PrematureExitError: the process died mid-turn.
            TurnCancelledError: the session was stopped or cancelled.
            SessionStateError: the previous turn failed and never ended.
        """
        self._ensure_usable()

        async with self._query_lock:
            previous = self._current
            if previous is not None:
                await self._wait_for_previous(previous)
            self._ensure_usable()
            assert self._feeder is not None

            pending = _PendingTurn(prompt, asyncio.get_running_loop().create_future())
            self._current = pending
            self._query_count += 1
            logger.debug(
                "[%s] Sending query %d: %s",
                self._name, self._query_count,
                prompt[:100] + ("..." if len(prompt) > 100 else ""),
            )
            try:
                self._feeder.submit(prompt)
            except BaseException as exc:
                pending.close(exc)
                pending.future.exception()
                raise

        try:
            records = await pending.future
        except asyncio.CancelledError:
            if not pending.finished.is_set():
                # The caller gave up on the turn; its output would bleed
                # into the next query, so the session goes too.
                await self.cancel("query task cancelled")
            raise

        logger.debug(
            "[%s] Query completed, collected %d records", self._name, len(records),
        )
        return QueryResult(records=records, snapshot=self.get_state())

    async def _wait_for_previous(self, previous: _PendingTurn) -> None:
        """Wait for the turn ahead to end.

        A turn already rejected by an error record only gets
        ``terminate_grace_seconds`` for its trailing result; some tools
        never send one, and the session stays stuck in that turn.
        """
        rejected = (
            previous.future.done()
            and not previous.future.cancelled()
            and previous.future.exception() is not None
        )
        if not rejected:
            await previous.finished.wait()
            return
        try:
            await asyncio.wait_for(
                previous.finished.wait(), timeout=self._config.terminate_grace_seconds,
            )
        except asyncio.TimeoutError:
            raise SessionStateError(
                "Previous turn failed without finishing; "
                "cancel() or stop() the session before querying again"
            ) from None

    def _ensure_usable(self) -> None:
        if self._session is None or self._feeder is None:
            raise SessionNotStartedError()
        if not self._session.is_alive():
            raise SessionNotAliveError(self._session.state.value)

    # ── Event handling ──

    def _handle_event(self, event: SessionEvent) -> None:
        current = self._current

        if isinstance(event, RecordObserved):
            # Output belongs to a turn only once its prompt is written.
            if (
                current is not None
                and not current.finished.is_set()
                and self._session is not None
                and self._session.state is ProcessState.PROCESSING
            ):
                current.records.append(event.record)

        elif isinstance(event, SessionReady):
            if self._ready is not None and not self._ready.done():
                self._ready.set_result(event.session_id)

        elif isinstance(event, Failed):
            error = event.error or PrematureExitError(None, turn_pending=True)
            if current is not None:
                current.reject(error)
            if self._ready is not None and not self._ready.done():
                self._ready.set_exception(error)
                self._ready.exception()

        elif isinstance(event, StateChanged):
            if event.state is ProcessState.PAUSED:
                if current is not None:
                    current.resolve()
            elif event.state in (
                ProcessState.TERMINATING,
                ProcessState.TERMINATED,
                ProcessState.ERROR,
            ):
                if current is not None:
                    current.close(TurnCancelledError(
                        f"session {event.state.value} before the turn finished"
                    ))
                if self._ready is not None and not self._ready.done():
                    self._ready.set_exception(SessionNotAliveError(event.state.value))
                    self._ready.exception()


def _consume_exception(future: asyncio.Future) -> None:
    if not future.cancelled():
        future.exception()
