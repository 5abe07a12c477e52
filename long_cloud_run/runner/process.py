"""Subprocess launch bound to a cancellation event.

A :class:`BoundProcess` owns a watcher task: as soon as the run's
``cancelled`` event fires while the child is still alive, the whole
process group is killed.  Nothing in the supervisor loop has to poll for
cancellation.
"""

from __future__ import annotations

import asyncio
import logging
import os
import signal

from ..errors import SetupError
from ..models import CommandSpec

log = logging.getLogger(__name__)

# Stream reader limit per line (asyncio's default is 64 KiB).
DEFAULT_LINE_LIMIT = 1024 * 1024


def exit_code(returncode: int | None) -> int | None:
    """Numeric exit status, or None if the process died from a signal."""
    if returncode is None or returncode < 0:
        return None
    return returncode


def describe_returncode(returncode: int | None) -> str:
    if returncode is None:
        return "no exit status"
    if returncode >= 0:
        return f"exit status {returncode}"
    try:
        name = signal.Signals(-returncode).name
    except ValueError:
        name = str(-returncode)
    return f"terminated by signal {name}"


class BoundProcess:
    """A running child process tied to a cancellation event."""

    def __init__(
        self,
        process: asyncio.subprocess.Process,
        cancelled: asyncio.Event,
        name: str = "",
    ) -> None:
        self.process = process
        self.name = name or str(process.pid)
        self._cancelled = cancelled
        self._watcher = asyncio.create_task(
            self._kill_on_cancel(), name=f"{self.name}-cancel-watcher",
        )

    @property
    def pid(self) -> int:
        return self.process.pid

    @property
    def returncode(self) -> int | None:
        return self.process.returncode

    @property
    def stdout(self) -> asyncio.StreamReader | None:
        return self.process.stdout

    @property
    def stderr(self) -> asyncio.StreamReader | None:
        return self.process.stderr

    async def wait(self) -> int:
        return await self.process.wait()

    def kill(self) -> bool:
        """SIGKILL the process group. Returns False if the child already exited."""
        if self.process.returncode is not None:
            return False
        try:
            pgid = os.getpgid(self.process.pid)
            os.killpg(pgid, signal.SIGKILL)
        except ProcessLookupError:
            return False
        except OSError as exc:
            log.debug("killpg failed for pid=%s, falling back to kill: %s", self.pid, exc)
            try:
                self.process.kill()
            except ProcessLookupError:
                return False
        log.debug("Sent SIGKILL to pid=%s", self.pid)
        return True

    def close(self) -> None:
        if not self._watcher.done():
            self._watcher.cancel()

    async def _kill_on_cancel(self) -> None:
        await self._cancelled.wait()
        if self.kill():
            log.info("Run cancelled, killed %s (pid=%s)", self.name, self.pid)


async def launch(
    command: CommandSpec,
    cancelled: asyncio.Event,
    *,
    limit: int = DEFAULT_LINE_LIMIT,
) -> BoundProcess:
    """Start *command* in its own session with stdout/stderr piped.

    Raises SetupError if the process cannot be started or its output
    pipes are missing.
    """
    try:
        process = await asyncio.create_subprocess_exec(
            *command.argv,
            stdin=asyncio.subprocess.DEVNULL,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
            # New process group so a kill takes the whole tree down
            start_new_session=True,
            limit=limit,
        )
    except (OSError, ValueError) as exc:
        raise SetupError(f"error starting command: {exc}") from exc

    bound = BoundProcess(process, cancelled, name=command.name)
    if process.stdout is None or process.stderr is None:
        bound.kill()
        bound.close()
        missing = "stdout" if process.stdout is None else "stderr"
        raise SetupError(f"error getting {missing} pipe")

    log.debug("Started %s pid=%s", command.name, process.pid)
    return bound
