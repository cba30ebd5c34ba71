"""Runs the coordinator against a real child process (tests/fake_cli.py)."""
import sys
from pathlib import Path

import pytest

from tether.engine.client import SessionClient
from tether.engine.config import SessionConfig
from tether.engine.errors import PrematureExitError
from tether.engine.models import ProcessState
from tether.engine.spawn import SpawnSpec

FAKE_CLI = Path(__file__).with_name("fake_cli.py")


def _spec(*args: str) -> SpawnSpec:
    return SpawnSpec(executable=sys.executable, argv=["-u", str(FAKE_CLI), *args])


def _config() -> SessionConfig:
    return SessionConfig(startup_timeout_seconds=10.0, terminate_grace_seconds=2.0)


@pytest.mark.asyncio
async def test_real_process_keeps_conversation_across_queries() -> None:
    async with SessionClient(_spec("S1"), config=_config()) as client:
        assert client.session_id == "S1"
        pid_before = client._session.pid

        first = await client.query("ping")
        second = await client.query("pong")

        assert first.of_kind("content")[0].payload["message"]["content"][0]["text"] == "echo: ping"
        assert second.of_kind("turn_result")[0].raw["num_turns"] == 2
        assert second.snapshot.completed_turns == 2
        assert client._session.pid == pid_before

    assert client.get_state().process_state is ProcessState.TERMINATED


@pytest.mark.asyncio
async def test_real_process_exit_mid_turn() -> None:
    client = SessionClient(_spec(), config=_config())
    await client.start()

    with pytest.raises(PrematureExitError) as excinfo:
        await client.query("/exit 3")

    assert excinfo.value.returncode == 3
    assert not client.is_alive()
    await client.stop()
