"""Shared fixtures for the runner tests."""

from __future__ import annotations

import asyncio

import pytest

from long_cloud_run.config import PollSettings
from long_cloud_run.models import RunContext

# Every setting the config layer reads from the environment
ENV_VARS = (
    "HOST",
    "PORT",
    "POLL_INTERVAL",
    "MAX_POLL_INTERVAL",
    "MAX_ELAPSED_TIME",
    "SHOW_OUTPUT",
    "CAN_FAIL",
    "ALLOWED_EXIT_CODES",
    "EXIT_ON_FAILURE",
    "OUTPUT_DRAIN_TIMEOUT",
    "LOG_LEVEL",
)


class RecordingSink:
    """Progress sink that remembers every flushed chunk."""

    def __init__(self) -> None:
        self.chunks: list[str] = []
        self.flushes = 0
        self._pending: list[str] = []

    async def write(self, data: str) -> None:
        self._pending.append(data)

    async def flush(self) -> None:
        self.flushes += 1
        if self._pending:
            self.chunks.append("".join(self._pending))
            self._pending.clear()

    @property
    def lines(self) -> list[str]:
        return "".join(self.chunks).splitlines()


@pytest.fixture
def sink() -> RecordingSink:
    return RecordingSink()


@pytest.fixture
def context(sink: RecordingSink) -> RunContext:
    return RunContext(sink=sink, cancelled=asyncio.Event())


@pytest.fixture
def fast_poll() -> PollSettings:
    """Quick ticks, generous deadline."""
    return PollSettings(
        initial_interval=0.05,
        max_interval=0.1,
        max_elapsed_time=30.0,
        randomization_factor=0.0,
    )


@pytest.fixture
def clean_env(monkeypatch: pytest.MonkeyPatch) -> pytest.MonkeyPatch:
    """Remove config variables; anything a test or dotenv sets is undone."""
    for name in ENV_VARS:
        # setenv first so the undo step removes values loaded by dotenv too
        monkeypatch.setenv(name, "")
        monkeypatch.delenv(name)
    return monkeypatch


async def wait_until(predicate, timeout: float = 5.0) -> None:
    """Poll *predicate* until it returns true or *timeout* expires."""
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("condition not met in time")
        await asyncio.sleep(0.02)
