"""Events published by a process session, and the bus that carries them.

Handlers are called synchronously, in subscription order, from the
event loop task that caused the event. That keeps every observer's
view of state changes and records in the same order the reader saw
them. Async consumers use SessionEventBus.stream() instead.
"""
from __future__ import annotations

import asyncio
import logging
from collections.abc import AsyncIterator, Callable
from dataclasses import dataclass, field

from .models import ProcessState
from .records import OutputRecord, TurnResult

logger = logging.getLogger(__name__)


@dataclass
class SessionEvent:
    """Base event from a process session."""
    event_type: str = ""


@dataclass
class StateChanged(SessionEvent):
    event_type: str = "state_changed"
    state: ProcessState = ProcessState.NOT_STARTED
    previous: ProcessState = ProcessState.NOT_STARTED


@dataclass
class RecordObserved(SessionEvent):
    event_type: str = "record_observed"
    record: OutputRecord = field(default_factory=OutputRecord)


@dataclass
class Failed(SessionEvent):
    event_type: str = "failed"
    error: BaseException | None = None


@dataclass
class SessionReady(SessionEvent):
    event_type: str = "session_ready"
    session_id: str = ""


EventHandler = Callable[[SessionEvent], None]


class SessionEventBus:
    """Fan-out of session events to synchronous handlers and async streams."""

    def __init__(self, stream_maxsize: int = 1000) -> None:
        self._handlers: list[EventHandler] = []
        self._streams: list[asyncio.Queue[SessionEvent | None]] = []
        self._stream_maxsize = stream_maxsize
        self._closed = False

    def subscribe(self, handler: EventHandler) -> Callable[[], None]:
        """Register a handler. Returns a callable that unsubscribes it."""
        self._handlers.append(handler)

        def unsubscribe() -> None:
            if handler in self._handlers:
                self._handlers.remove(handler)

        return unsubscribe

    def publish(self, event: SessionEvent) -> None:
        if self._closed:
            logger.debug("Event after bus close ignored: %s", event.event_type)
            return
        for handler in list(self._handlers):
            try:
                handler(event)
            except Exception:
                logger.exception(
                    "Session event handler %r failed on %s", handler, event.event_type,
                )
        for queue in self._streams:
            try:
                queue.put_nowait(event)
            except asyncio.QueueFull:
                logger.error(
                    "Event stream full, dropping: %s (queue size: %d)",
                    event.event_type,
                    queue.qsize(),
                )

    async def stream(self) -> AsyncIterator[SessionEvent]:
        """Yield events as they arrive. Stops on close()."""
        queue: asyncio.Queue[SessionEvent | None] = asyncio.Queue(
            maxsize=self._stream_maxsize
        )
        self._streams.append(queue)
        try:
            while not self._closed or not queue.empty():
                event = await queue.get()
                if event is None:
                    break
                yield event
        finally:
            self._streams.remove(queue)

    def close(self) -> None:
        """Stop all streams once their queued events are drained."""
        if self._closed:
            return
        self._closed = True
        for queue in self._streams:
            try:
                queue.put_nowait(None)
            except asyncio.QueueFull:
                logger.warning("Event stream full on close; consumer will stop late")


class LoggingObserver:
    """Logs session events. Subscribe it like any other handler."""

    def __init__(self, name: str = "session", log: logging.Logger | None = None) -> None:
        self._name = name
        self._log = log or logger

    def __call__(self, event: SessionEvent) -> None:
        if isinstance(event, StateChanged):
            self._log.info(
                "[%s] State: %s -> %s",
                self._name, event.previous.value, event.state.value,
            )
        elif isinstance(event, SessionReady):
            self._log.info("[%s] Session initialized: %s", self._name, event.session_id)
        elif isinstance(event, Failed):
            self._log.error("[%s] Session error: %s", self._name, event.error)
        elif isinstance(event, RecordObserved):
            record = event.record
            if isinstance(record, TurnResult):
                self._log.info(
                    "[%s] Turn completed (is_error=%s)", self._name, record.is_error,
                )
            else:
                self._log.debug(
                    "[%s] Record %s (type=%s)", self._name, record.kind, record.type,
                )
