import asyncio

import pytest

from tether.engine.errors import RendezvousStateError
from tether.engine.rendezvous import Rendezvous, RendezvousStatus


@pytest.mark.asyncio
async def test_wait_returns_value_resolved_later() -> None:
    slot: Rendezvous[str] = Rendezvous()
    waiter = asyncio.create_task(slot.wait())
    await asyncio.sleep(0)
    assert not waiter.done()

    slot.resolve("hello")

    assert await waiter == "hello"
    assert slot.status is RendezvousStatus.RESOLVED
    assert slot.consumed


@pytest.mark.asyncio
async def test_value_resolved_before_wait_is_delivered() -> None:
    slot: Rendezvous[int] = Rendezvous()
    slot.resolve(7)

    assert await slot.wait() == 7


@pytest.mark.asyncio
async def test_reject_raises_in_waiter() -> None:
    slot: Rendezvous[str] = Rendezvous()
    waiter = asyncio.create_task(slot.wait())
    await asyncio.sleep(0)

    slot.reject(ValueError("boom"))

    with pytest.raises(ValueError, match="boom"):
        await waiter
    assert slot.status is RendezvousStatus.REJECTED


@pytest.mark.asyncio
async def test_value_is_never_yielded_twice() -> None:
    slot: Rendezvous[str] = Rendezvous()
    slot.resolve("once")
    assert await slot.wait() == "once"

    with pytest.raises(RendezvousStateError):
        await slot.wait()


def test_resolving_settled_slot_raises() -> None:
    slot: Rendezvous[str] = Rendezvous()
    slot.resolve("first")

    with pytest.raises(RendezvousStateError):
        slot.resolve("second")
    with pytest.raises(RendezvousStateError):
        slot.reject(RuntimeError("late"))


@pytest.mark.asyncio
async def test_second_concurrent_waiter_is_refused() -> None:
    slot: Rendezvous[str] = Rendezvous()
    first = asyncio.create_task(slot.wait())
    await asyncio.sleep(0)

    with pytest.raises(RendezvousStateError):
        await slot.wait()

    slot.resolve("x")
    assert await first == "x"


@pytest.mark.asyncio
async def test_cancelled_waiter_does_not_lose_value() -> None:
    slot: Rendezvous[str] = Rendezvous()
    waiter = asyncio.create_task(slot.wait())
    await asyncio.sleep(0)
    waiter.cancel()
    with pytest.raises(asyncio.CancelledError):
        await waiter

    slot.resolve("kept")

    assert not slot.consumed
    assert await slot.wait() == "kept"


@pytest.mark.asyncio
async def test_error_rejected_before_wait_is_raised_once() -> None:
    slot: Rendezvous[str] = Rendezvous()
    slot.reject(KeyError("missing"))

    with pytest.raises(KeyError):
        await slot.wait()
    with pytest.raises(RendezvousStateError):
        await slot.wait()


def test_reject_requires_an_exception() -> None:
    slot: Rendezvous[str] = Rendezvous()

    with pytest.raises(TypeError):
        slot.reject("not an exception")  # type: ignore[arg-type]

    assert slot.pending
