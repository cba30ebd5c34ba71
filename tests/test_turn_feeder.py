import asyncio

import pytest

from tether.engine.errors import (
    FeederStateError,
    FeederTerminatedError,
    TurnBacklogFullError,
)
from tether.engine.feeder import TurnFeeder
from tether.engine.models import Turn


@pytest.mark.asyncio
async def test_turns_are_emitted_in_submit_order_with_sequence_numbers() -> None:
    feeder = TurnFeeder()
    turns = feeder.produce_turns()

    feeder.submit("first")
    assert await turns.__anext__() == Turn(sequence=1, prompt="first")

    feeder.submit("second")
    assert await turns.__anext__() == Turn(sequence=2, prompt="second")
    assert feeder.emitted == 2

    feeder.terminate()
    await turns.aclose()


@pytest.mark.asyncio
async def test_consumer_suspends_until_submit() -> None:
    feeder = TurnFeeder()
    turns = feeder.produce_turns()
    pending = asyncio.create_task(turns.__anext__())
    await asyncio.sleep(0)
    assert not pending.done()

    feeder.submit("go")

    assert (await pending).prompt == "go"
    feeder.terminate()


@pytest.mark.asyncio
async def test_overlapping_submits_are_queued_not_dropped() -> None:
    feeder = TurnFeeder(backlog_size=2)
    turns = feeder.produce_turns()
    feeder.submit("a")
    await turns.__anext__()

    # The consumer is busy with "a": both land behind it.
    feeder.submit("b")
    feeder.submit("c")
    assert feeder.backlog == 1

    assert (await turns.__anext__()).prompt == "b"
    assert (await turns.__anext__()).prompt == "c"
    feeder.terminate()


def test_backlog_overflow_raises() -> None:
    feeder = TurnFeeder(backlog_size=0)
    feeder.submit("fills the slot")

    with pytest.raises(TurnBacklogFullError) as excinfo:
        feeder.submit("one too many")
    assert excinfo.value.capacity == 0


@pytest.mark.asyncio
async def test_terminate_ends_a_suspended_sequence() -> None:
    feeder = TurnFeeder()
    turns = feeder.produce_turns()
    pending = asyncio.create_task(turns.__anext__())
    await asyncio.sleep(0)

    feeder.terminate()

    with pytest.raises(StopAsyncIteration):
        await pending
    assert feeder.terminated


def test_submit_after_terminate_raises() -> None:
    feeder = TurnFeeder()
    feeder.terminate()
    feeder.terminate()

    with pytest.raises(FeederTerminatedError):
        feeder.submit("late")


@pytest.mark.asyncio
async def test_sequence_can_only_be_iterated_once() -> None:
    feeder = TurnFeeder()
    first = feeder.produce_turns()
    feeder.submit("x")
    await first.__anext__()

    with pytest.raises(FeederStateError):
        await feeder.produce_turns().__anext__()
    feeder.terminate()


@pytest.mark.asyncio
async def test_before_emit_hook_runs_for_each_turn() -> None:
    seen: list[str] = []

    async def before_emit(prompt: str) -> None:
        seen.append(prompt)

    feeder = TurnFeeder()
    feeder.set_hooks(before_emit=before_emit)
    turns = feeder.produce_turns()
    feeder.submit("one")
    await turns.__anext__()

    assert seen == ["one"]
    feeder.terminate()


@pytest.mark.asyncio
async def test_hook_failure_is_reported_and_propagated() -> None:
    errors: list[BaseException] = []

    def before_emit(prompt: str) -> None:
        raise RuntimeError(f"rejected {prompt}")

    feeder = TurnFeeder()
    feeder.set_hooks(before_emit=before_emit, on_error=errors.append)
    turns = feeder.produce_turns()
    feeder.submit("bad")

    with pytest.raises(RuntimeError, match="rejected bad"):
        await turns.__anext__()
    assert len(errors) == 1
