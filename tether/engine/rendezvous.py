"""Single-slot rendezvous between an external actor and one waiter.

A Rendezvous carries exactly one value (or one error) from whoever
calls resolve()/reject() to the single task awaiting wait(). It is
single-use in both directions: resolving twice, or consuming twice,
raises RendezvousStateError. Owners install a fresh slot once the
current one has been consumed.
"""
from __future__ import annotations

import asyncio
from enum import Enum
from typing import Generic, TypeVar

from .errors import RendezvousStateError

T = TypeVar("T")


class RendezvousStatus(str, Enum):
    PENDING = "pending"
    RESOLVED = "resolved"
    REJECTED = "rejected"


class Rendezvous(Generic[T]):
    """Externally resolvable one-shot slot."""

    def __init__(self) -> None:
        self._status = RendezvousStatus.PENDING
        self._value: T | None = None
        self._error: BaseException | None = None
        # Wake-up signal only; the outcome lives on the instance so a
        # cancelled waiter never loses a value resolved afterwards.
        self._wakeup: asyncio.Future[None] | None = None
        self._consumed = False

    @property
    def status(self) -> RendezvousStatus:
        return self._status

    @property
    def pending(self) -> bool:
        return self._status is RendezvousStatus.PENDING

    @property
    def consumed(self) -> bool:
        return self._consumed

    def resolve(self, value: T) -> None:
        self._settle(RendezvousStatus.RESOLVED)
        self._value = value
        self._wake()

    def reject(self, error: BaseException) -> None:
        if not isinstance(error, BaseException):
            raise TypeError(f"reject() needs an exception, got {type(error).__name__}")
        self._settle(RendezvousStatus.REJECTED)
        self._error = error
        self._wake()

    async def wait(self) -> T:
        """Suspend until the slot is settled; return its value once."""
        if self._consumed:
            raise RendezvousStateError("Rendezvous value was already consumed")

        if self._status is RendezvousStatus.PENDING:
            if self._wakeup is not None and not self._wakeup.done():
                raise RendezvousStateError("Rendezvous already has a waiter")
            self._wakeup = asyncio.get_running_loop().create_future()
            await self._wakeup

        self._consumed = True
        # reject() is the only writer of _error.
        if self._error is not None:
            raise self._error
        return self._value  # type: ignore[return-value]

    def _settle(self, status: RendezvousStatus) -> None:
        if self._status is not RendezvousStatus.PENDING:
            raise RendezvousStateError(
                f"Cannot {'resolve' if status is RendezvousStatus.RESOLVED else 'reject'} "
                f"a rendezvous that is already {self._status.value}"
            )
        self._status = status

    def _wake(self) -> None:
        if self._wakeup is not None and not self._wakeup.done():
            self._wakeup.set_result(None)

    def __repr__(self) -> str:
        return f"<Rendezvous status={self._status.value} consumed={self._consumed}>"
