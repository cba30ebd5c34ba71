import io
import json
import sys
from pathlib import Path

import pytest

from tether.engine.cli import build_parser, main, resolve_session, run_session
from tether.engine.config import SessionConfig
from tether.engine.errors import ConfigurationError, SpawnFailureError
from tether.engine.spawn import SpawnSpec

FAKE_CLI = Path(__file__).with_name("fake_cli.py")


def test_parser_collects_command_after_separator() -> None:
    args = build_parser().parse_args(
        ["-v", "--seed", "hi", "--", "claude", "--print", "--verbose"]
    )

    assert args.verbose
    assert args.seed == "hi"
    assert [a for a in args.command if a != "--"] == ["claude", "--print", "--verbose"]


def test_resolve_session_uses_command_and_flags(tmp_path: Path) -> None:
    args = build_parser().parse_args(
        ["--cwd", str(tmp_path), "--startup-timeout", "9", "--", sys.executable, "-u", "x.py"]
    )

    spec, config = resolve_session(args)

    assert spec.executable == sys.executable
    assert spec.argv == ["-u", "x.py"]
    assert spec.cwd == str(tmp_path)
    assert config.startup_timeout_seconds == 9.0


def test_resolve_session_reads_process_from_yaml(tmp_path: Path) -> None:
    config_file = tmp_path / "tether.yaml"
    config_file.write_text(
        f"session:\n  turn_backlog_size: 1\nprocess:\n  executable: {sys.executable}\n"
        f"  args: ['-u', '{FAKE_CLI}']\n",
        encoding="utf-8",
    )
    args = build_parser().parse_args(["--config", str(config_file)])

    spec, config = resolve_session(args)

    assert spec.argv == ["-u", str(FAKE_CLI)]
    assert config.turn_backlog_size == 1


def test_resolve_session_without_executable() -> None:
    with pytest.raises(ConfigurationError):
        resolve_session(build_parser().parse_args([]))


def test_resolve_session_unknown_executable() -> None:
    args = build_parser().parse_args(["--", "/nonexistent/tether-tool"])

    with pytest.raises(SpawnFailureError):
        resolve_session(args)


def test_main_exits_1_without_executable(capsys: pytest.CaptureFixture[str]) -> None:
    with pytest.raises(SystemExit) as excinfo:
        main([])

    assert excinfo.value.code == 1
    assert "No executable given" in capsys.readouterr().out


@pytest.mark.asyncio
async def test_run_session_echoes_records_per_prompt() -> None:
    spec = SpawnSpec(executable=sys.executable, argv=["-u", str(FAKE_CLI), "cli-session"])
    stdin = io.StringIO("first\n\nsecond\n")
    stdout = io.StringIO()

    code = await run_session(
        spec,
        SessionConfig(startup_timeout_seconds=10.0, terminate_grace_seconds=2.0),
        stdin=stdin,
        stdout=stdout,
    )

    assert code == 0
    lines = [json.loads(line) for line in stdout.getvalue().splitlines()]
    assert [line["type"] for line in lines] == ["assistant", "result", "assistant", "result"]
    assert lines[2]["message"]["content"][0]["text"] == "echo: second"


@pytest.mark.asyncio
async def test_run_session_reports_startup_failure(capsys: pytest.CaptureFixture[str]) -> None:
    spec = SpawnSpec(executable="/nonexistent/tether-tool")

    code = await run_session(spec, SessionConfig(), stdin=io.StringIO(""), stdout=io.StringIO())

    assert code == 1
    assert "could not start" in capsys.readouterr().err
