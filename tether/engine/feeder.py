"""Turn feeder: an endless sequence of prompts gated by submit().

The process session's writer loop iterates produce_turns(); each
iteration suspends on a Rendezvous until a caller submits the next
prompt. Prompts submitted while a turn is still in flight wait in a
bounded backlog instead of replacing the pending one.

Example:
    feeder = TurnFeeder()
    turns = feeder.produce_turns()
    feeder.submit("Hello")
    turn = await turns.__anext__()   # Turn(sequence=1, prompt="Hello")
    feeder.terminate()               # sequence ends on its next wait
"""
from __future__ import annotations

import inspect
import logging
from collections import deque
from collections.abc import AsyncIterator, Awaitable, Callable
from typing import Union

from .errors import (
    FeederStateError,
    FeederTerminatedError,
    TurnBacklogFullError,
)
from .models import Turn
from .rendezvous import Rendezvous

logger = logging.getLogger(__name__)

BeforeEmitHook = Callable[[str], Union[None, Awaitable[None]]]
ErrorHook = Callable[[BaseException], Union[None, Awaitable[None]]]

DEFAULT_BACKLOG_SIZE = 8


async def _call_hook(hook: Callable | None, *args) -> None:
    if hook is None:
        return
    result = hook(*args)
    if inspect.isawaitable(result):
        await result


class TurnFeeder:
    """Hands prompts from callers to the writer loop, one turn at a time."""

    def __init__(self, backlog_size: int = DEFAULT_BACKLOG_SIZE) -> None:
        if backlog_size < 0:
            raise ValueError("backlog_size must be >= 0")
        self._slot: Rendezvous[str] = Rendezvous()
        self._backlog: deque[str] = deque()
        self._backlog_size = backlog_size
        self._before_emit: BeforeEmitHook | None = None
        self._on_error: ErrorHook | None = None
        self._terminated = False
        self._started = False
        self._sequence = 0

    @property
    def terminated(self) -> bool:
        return self._terminated

    @property
    def emitted(self) -> int:
        """Number of turns handed to the consumer so far."""
        return self._sequence

    @property
    def backlog(self) -> int:
        return len(self._backlog)

    def set_hooks(
        self,
        *,
        before_emit: BeforeEmitHook | None = None,
        on_error: ErrorHook | None = None,
    ) -> None:
        """Attach lifecycle hooks. Passing None keeps the existing hook."""
        if before_emit is not None:
            self._before_emit = before_emit
        if on_error is not None:
            self._on_error = on_error

    def submit(self, prompt: str) -> None:
        """Queue the next prompt.

        Resolves the pending slot when the consumer is waiting for one;
        otherwise the prompt joins the backlog and is emitted after the
        turns ahead of it.
        """
        if self._terminated:
            raise FeederTerminatedError()
        if self._slot.pending and not self._backlog:
            self._slot.resolve(prompt)
            return
        if len(self._backlog) >= self._backlog_size:
            raise TurnBacklogFullError(self._backlog_size)
        self._backlog.append(prompt)
        logger.debug(
            "Prompt queued behind in-flight turn (backlog=%d)", len(self._backlog),
        )

    def terminate(self) -> None:
        """End the sequence. Idempotent."""
        if self._terminated:
            return
        self._terminated = True
        dropped = len(self._backlog)
        self._backlog.clear()
        if self._slot.pending:
            self._slot.reject(FeederTerminatedError())
        if dropped:
            logger.info("Turn feeder terminated with %d queued prompt(s) dropped", dropped)

    async def produce_turns(self) -> AsyncIterator[Turn]:
        """Yield turns forever, suspending between them until submit()."""
        if self._started:
            raise FeederStateError("produce_turns() can only be iterated once")
        self._started = True

        while True:
            try:
                prompt = await self._slot.wait()
            except FeederTerminatedError:
                return

            if self._terminated:
                return

            # Re-arm before yielding so a submit() made while this turn
            # runs lands in a fresh slot.
            self._slot = Rendezvous()
            if self._backlog:
                self._slot.resolve(self._backlog.popleft())

            try:
                await _call_hook(self._before_emit, prompt)
            except Exception as exc:
                await _call_hook(self._on_error, exc)
                raise

            self._sequence += 1
            yield Turn(sequence=self._sequence, prompt=prompt)
