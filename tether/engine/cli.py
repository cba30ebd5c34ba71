"""CLI entry point for a persistent tool session.

Usage:
    tether -- claude --print --input-format text --output-format stream-json
    tether --seed "hello" --startup-timeout 60 -- ./my-tool --json
    tether --config tether.yaml

Each line read from stdin is sent as one turn; every record of the turn
is echoed to stdout as a JSON line.
"""
from __future__ import annotations

import argparse
import asyncio
import json
import logging
import sys
from logging.handlers import RotatingFileHandler
from typing import TextIO

from .client import SessionClient
from .config import SessionConfig
from .errors import ConfigurationError, TetherError
from .spawn import SpawnSpec, find_executable


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="tether",
        description=(
            "Keep a line-oriented CLI tool running and talk to it "
            "one turn at a time"
        ),
    )
    parser.add_argument(
        "command",
        nargs=argparse.REMAINDER,
        help="Executable and its arguments (after --)",
    )
    parser.add_argument(
        "--config", "-c",
        default=None,
        help="YAML config file with session: and process: sections",
    )
    parser.add_argument(
        "--cwd",
        default=None,
        help="Working directory for the tool (default: current dir)",
    )
    parser.add_argument(
        "--seed",
        default=None,
        help="Prompt sent right after spawning, before the session is ready",
    )
    parser.add_argument(
        "--startup-timeout",
        type=float,
        default=None,
        help="Seconds to wait for the session id (default: 30)",
    )
    parser.add_argument(
        "--log-file",
        default=None,
        help="Also write logs to this file (rotated at 10 MB)",
    )
    parser.add_argument(
        "--verbose", "-v",
        action="store_true",
        help="Enable debug logging and print the session state after each turn",
    )
    return parser


def configure_logging(verbose: bool, log_file: str | None) -> None:
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(
        level=level,
        format="%(asctime)s %(name)s %(levelname)s %(message)s",
        datefmt="%H:%M:%S",
        stream=sys.stderr,
    )
    if log_file:
        handler = RotatingFileHandler(
            log_file, maxBytes=10 * 1024 * 1024, backupCount=3, encoding="utf-8",
        )
        handler.setFormatter(logging.Formatter(
            "%(asctime)s [%(levelname)s] %(name)s: %(message)s"
        ))
        handler.setLevel(logging.DEBUG)
        logging.getLogger().addHandler(handler)


def resolve_session(args: argparse.Namespace) -> tuple[SpawnSpec, SessionConfig]:
    """Merge the config file, environment and command-line flags.

    Raises ConfigurationError when no executable is given anywhere.
    """
    config = SessionConfig.from_env()
    spec: SpawnSpec | None = None

    if args.config:
        from .yaml_config import load_yaml_config

        loaded = load_yaml_config(args.config, base=config)
        config = loaded.session
        spec = loaded.spawn

    command = list(args.command or [])
    if command and command[0] == "--":
        command = command[1:]
    if command:
        spec = SpawnSpec(
            executable=command[0],
            argv=command[1:],
            cwd=spec.cwd if spec else None,
            env=dict(spec.env) if spec else {},
        )
    if spec is None:
        raise ConfigurationError("No executable given (pass it after -- or via --config)")

    spec.executable = find_executable(spec.executable)
    if args.cwd is not None:
        spec.cwd = args.cwd
    if args.startup_timeout is not None:
        config.startup_timeout_seconds = args.startup_timeout
        config.validate()
    return spec, config


async def run_session(
    spec: SpawnSpec,
    config: SessionConfig,
    *,
    seed: str | None = None,
    verbose: bool = False,
    stdin: TextIO | None = None,
    stdout: TextIO | None = None,
) -> int:
    """Drive one session from line-oriented input. Returns an exit code."""
    stdin = stdin or sys.stdin
    stdout = stdout or sys.stdout
    loop = asyncio.get_running_loop()
    client = SessionClient(spec, config=config, name=spec.executable.rsplit("/", 1)[-1])

    try:
        snapshot = await client.start(seed_prompt=seed)
    except (TetherError, asyncio.TimeoutError) as exc:
        print(f"Error: could not start {spec.describe()}: {exc}", file=sys.stderr)
        return 1

    if verbose:
        print(f"session ready: {snapshot.session_id}", file=sys.stderr)

    exit_code = 0
    try:
        while True:
            line = await loop.run_in_executor(None, stdin.readline)
            if not line:
                break
            prompt = line.rstrip("\n")
            if not prompt.strip():
                continue
            try:
                result = await client.query(prompt)
            except TetherError as exc:
                print(f"Error: {exc}", file=sys.stderr)
                if not client.is_alive():
                    exit_code = 1
                    break
                continue
            for record in result.records:
                stdout.write(json.dumps(record.raw) + "\n")
            stdout.flush()
            if verbose:
                snap = result.snapshot
                print(
                    f"[{snap.process_state.value}] turns={snap.completed_turns} "
                    f"session={snap.session_id}",
                    file=sys.stderr,
                )
    finally:
        await client.stop()
    return exit_code


def main(argv: list[str] | None = None) -> None:
    parser = build_parser()
    args = parser.parse_args(argv)

    configure_logging(args.verbose, args.log_file)

    try:
        spec, config = resolve_session(args)
    except (TetherError, ValueError) as exc:
        print(f"Error: {exc}")
        sys.exit(1)

    logging.getLogger().setLevel(
        logging.DEBUG if args.verbose
        else getattr(logging, config.log_level.upper(), logging.INFO)
    )

    try:
        exit_code = asyncio.run(
            run_session(spec, config, seed=args.seed, verbose=args.verbose)
        )
    except KeyboardInterrupt:
        print("\nInterrupted.")
        sys.exit(1)
    sys.exit(exit_code)


if __name__ == "__main__":
    main()
