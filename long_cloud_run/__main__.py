"""Serve the HTTP trigger for one configured command.

Usage:
    python -m long_cloud_run [options] COMMAND [ARGS...]

Every request to ``/`` runs COMMAND once and streams its progress back.
If a run fails the server shuts down and the process exits with status 1,
so the hosting platform sees the failure.
"""

import argparse
import asyncio
import dataclasses
import logging
import sys
from pathlib import Path

import uvicorn

from long_cloud_run.config import Config, parse_exit_codes
from long_cloud_run.durations import parse_duration
from long_cloud_run.models import CommandSpec, Outcome
from long_cloud_run.server import create_app

log = logging.getLogger(__name__)


def _duration_arg(value: str) -> float:
    try:
        return parse_duration(value)
    except ValueError as exc:
        raise argparse.ArgumentTypeError(str(exc)) from None


def _exit_codes_arg(value: str) -> frozenset[int]:
    try:
        return parse_exit_codes(value)
    except ValueError as exc:
        raise argparse.ArgumentTypeError(str(exc)) from None


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="long-cloud-run",
        description="Run a command per HTTP request and stream its output",
    )
    parser.add_argument("--env-file", type=Path, default=None,
                        help="dotenv file to load before reading the environment")
    parser.add_argument("--host", help="Interface to bind (env HOST, default 0.0.0.0)")
    parser.add_argument("--port", type=int, help="Port to listen on (env PORT, default 8080)")
    parser.add_argument("--poll-interval", type=_duration_arg,
                        help="Initial liveness interval (env POLL_INTERVAL, default 5s)")
    parser.add_argument("--max-poll-interval", type=_duration_arg,
                        help="Largest liveness interval (env MAX_POLL_INTERVAL, default 5m)")
    parser.add_argument("--max-elapsed", type=_duration_arg,
                        help="Kill the command after this long (env MAX_ELAPSED_TIME, default 60m)")
    parser.add_argument("--allowed-exit-codes", type=_exit_codes_arg,
                        help="Comma separated exit codes counted as success (env ALLOWED_EXIT_CODES)")
    parser.add_argument("--show-output", action=argparse.BooleanOptionalAction, default=None,
                        help="Stream command output to the caller (env SHOW_OUTPUT)")
    parser.add_argument("--can-fail", action=argparse.BooleanOptionalAction, default=None,
                        help="Report any failure as success (env CAN_FAIL)")
    parser.add_argument("--exit-on-failure", action=argparse.BooleanOptionalAction, default=None,
                        help="Exit the server with status 1 after a failed run (env EXIT_ON_FAILURE)")
    parser.add_argument("command", help="Program to run for each request")
    parser.add_argument("args", nargs=argparse.REMAINDER, help="Arguments for the program")
    return parser


def load_config(args: argparse.Namespace) -> Config:
    """Environment first, command line flags on top."""
    config = Config.from_env(args.env_file)

    poll_overrides = {
        key: value
        for key, value in (
            ("initial_interval", args.poll_interval),
            ("max_interval", args.max_poll_interval),
            ("max_elapsed_time", args.max_elapsed),
        )
        if value is not None
    }
    overrides = {
        key: value
        for key, value in (
            ("host", args.host),
            ("port", args.port),
            ("allowed_exit_codes", args.allowed_exit_codes),
            ("show_output", args.show_output),
            ("can_fail", args.can_fail),
            ("exit_on_failure", args.exit_on_failure),
        )
        if value is not None
    }
    if poll_overrides:
        overrides["poll"] = dataclasses.replace(config.poll, **poll_overrides)
    return dataclasses.replace(config, **overrides)


async def _run(config: Config, command: CommandSpec) -> int:
    exit_status = 0
    server: uvicorn.Server | None = None

    def _on_failure(outcome: Outcome) -> None:
        nonlocal exit_status
        exit_status = 1
        log.error("Run failed (%s), shutting down", outcome.kind.value)
        if server is not None:
            server.should_exit = True

    app = create_app(
        command,
        config,
        on_failure=_on_failure if config.exit_on_failure else None,
    )
    server = uvicorn.Server(uvicorn.Config(
        app, host=config.host, port=config.port, log_level=config.log_level.lower(),
    ))

    log.info("Listening on port %d", config.port)
    await server.serve()
    return exit_status


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    try:
        config = load_config(args)
    except ValueError as exc:
        parser.error(str(exc))

    logging.basicConfig(
        level=config.log_level,
        format="%(asctime)s %(levelname)-8s %(name)s: %(message)s",
    )

    command = config.command_spec(args.command, args.args)
    log.info("Starting command runner for: %s", command.name)
    return asyncio.run(_run(config, command))


if __name__ == "__main__":
    sys.exit(main())
