"""Merge a process's stdout and stderr into one stream of line events."""

from __future__ import annotations

import asyncio
import logging

from ..errors import SetupError
from ..models import OutputLine

log = logging.getLogger(__name__)


class OutputMultiplexer:
    """Two line scanners feeding a shared queue.

    Order is kept within each stream; lines from stdout and stderr
    interleave in whatever order they are read.  The queue is unbounded,
    so a consumer that stops draining it lets memory grow.
    """

    def __init__(self, events: asyncio.Queue, name: str = "command") -> None:
        self._events = events
        self._name = name
        self._tasks: list[asyncio.Task[None]] = []

    def attach(
        self,
        stdout: asyncio.StreamReader | None,
        stderr: asyncio.StreamReader | None,
    ) -> None:
        if stdout is None:
            raise SetupError("error getting stdout pipe")
        if stderr is None:
            raise SetupError("error getting stderr pipe")

        self._tasks = [
            asyncio.create_task(
                self._scan(stdout, "stdout"), name=f"{self._name}-stdout",
            ),
            asyncio.create_task(
                self._scan(stderr, "stderr"), name=f"{self._name}-stderr",
            ),
        ]

    async def drain(self, timeout: float) -> None:
        """Wait for both scanners to hit EOF, cancelling any still running after *timeout*."""
        if not self._tasks:
            return
        _, pending = await asyncio.wait(self._tasks, timeout=timeout)
        if pending:
            log.warning(
                "[%s] Output still open %.1fs after exit, dropping the rest",
                self._name, timeout,
            )
            self.close()

    def close(self) -> None:
        for task in self._tasks:
            if not task.done():
                task.cancel()

    async def _scan(self, stream: asyncio.StreamReader, label: str) -> None:
        while True:
            try:
                raw = await stream.readuntil(b"\n")
            except asyncio.IncompleteReadError as exc:
                # EOF, possibly after an unterminated last line
                raw = exc.partial
            except asyncio.LimitOverrunError as exc:
                log.warning("[%s] Dropped over-long line on %s", self._name, label)
                await self._skip_line(stream, exc.consumed)
                continue
            if not raw:
                break
            text = raw.decode("utf-8", errors="replace").rstrip("\r\n")
            await self._events.put(OutputLine(text=text, stream=label))

    @staticmethod
    async def _skip_line(stream: asyncio.StreamReader, consumed: int) -> None:
        """Discard input up to and including the next newline (or EOF)."""
        while True:
            await stream.readexactly(consumed)
            try:
                await stream.readuntil(b"\n")
                return
            except asyncio.IncompleteReadError:
                return
            except asyncio.LimitOverrunError as exc:
                consumed = exc.consumed
