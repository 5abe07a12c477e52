"""Command Supervisor: runs one command for one HTTP exchange.

Everything the supervisor reacts to arrives on a single queue:

  - ``OutputLine``  from the two output scanners
  - ``DeadlineTick`` from the backoff ticker (liveness notices, timeout)
  - ``ProcessExit`` from the completion waiter

The loop is the only writer to the caller's sink.  Caller disconnects are
handled by the process layer (see :mod:`long_cloud_run.runner.process`),
which kills the child; the loop just sees the resulting exit.
"""

from __future__ import annotations

import asyncio
import logging
import time

from ..config import PollSettings
from ..durations import format_duration
from ..errors import (
    ExitStatusError,
    RuntimeTerminationError,
    SetupError,
    UnclassifiedWaitError,
)
from ..models import (
    CommandSpec,
    DeadlineTick,
    Outcome,
    OutcomeKind,
    OutputLine,
    ProcessExit,
    RunContext,
    SupervisorEvent,
)
from .multiplexer import OutputMultiplexer
from .process import BoundProcess, describe_returncode, exit_code, launch
from .ticker import DeadlineTicker, ExponentialBackoff

log = logging.getLogger(__name__)

LIVENESS_INTERVAL = 1.0  # min seconds between "still waiting" notices


class CommandSupervisor:
    def __init__(
        self,
        command: CommandSpec,
        context: RunContext,
        poll: PollSettings | None = None,
        *,
        drain_timeout: float = 1.0,
    ) -> None:
        self.command = command
        self.context = context
        self.poll = poll or PollSettings()
        self.drain_timeout = drain_timeout
        self._timed_out = False
        self._terminated = False
        self._timeout_message = ""

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def run(self) -> Outcome:
        """Run the command to completion and classify how it ended."""
        name = self.command.name
        await self.context.progress(f"Running command: {name}")
        log.info("[%s] Running as: %s %r", name, name, list(self.command.args))

        events: asyncio.Queue[SupervisorEvent] = asyncio.Queue()
        multiplexer = OutputMultiplexer(events, name=name)
        started = time.monotonic()

        try:
            proc = await launch(self.command, self.context.cancelled)
        except SetupError as exc:
            return await self._setup_failed(exc)

        try:
            multiplexer.attach(proc.stdout, proc.stderr)
        except SetupError as exc:
            proc.kill()
            proc.close()
            return await self._setup_failed(exc)

        ticker = DeadlineTicker(ExponentialBackoff(self.poll), events)
        waiter = asyncio.create_task(
            self._wait_for_exit(proc, multiplexer, events), name=f"{name}-waiter",
        )
        ticker.start()
        last_notice = time.monotonic()

        try:
            while True:
                event = await events.get()

                if isinstance(event, OutputLine):
                    await self._handle_output(event)

                elif isinstance(event, DeadlineTick):
                    now = time.monotonic()
                    if event.expired:
                        await self._handle_deadline(proc, ticker)
                    elif now - last_notice > LIVENESS_INTERVAL:
                        elapsed = format_duration(now - started)
                        await self.context.progress(
                            f"[Still waiting for command to complete: {name} --- {elapsed}]"
                        )
                        last_notice = time.monotonic()

                elif isinstance(event, ProcessExit):
                    ticker.stop()
                    return await self._classify(event, time.monotonic() - started)
        finally:
            ticker.stop()
            if not waiter.done():
                waiter.cancel()
            multiplexer.close()
            if proc.kill():
                log.warning("[%s] Killed command left running after supervisor exit", name)
            proc.close()

    # ------------------------------------------------------------------
    # Event handlers
    # ------------------------------------------------------------------

    async def _handle_output(self, event: OutputLine) -> None:
        if self.command.show_output and not self._terminated:
            await self.context.progress(event.text)
        else:
            log.info("[%s] %s", self.command.name, event.text)

    async def _handle_deadline(self, proc: BoundProcess, ticker: DeadlineTicker) -> None:
        if self._terminated:
            return
        ticker.stop()
        if proc.returncode is not None or not proc.kill():
            # Exited while its output was still draining; the exit decides
            log.info("[%s] Deadline reached but command already exited", self.command.name)
            return
        self._terminated = True
        self._timed_out = True
        max_elapsed = self.poll.max_elapsed_time
        resolution = 60.0 if max_elapsed >= 60 else 1.0
        self._timeout_message = (
            f"Command timed out in {format_duration(max_elapsed, resolution)}: "
            f"{self.command.name}"
        )
        await self.context.progress(self._timeout_message)

    async def _classify(self, event: ProcessExit, elapsed: float) -> Outcome:
        duration = format_duration(elapsed)
        name = self.command.name

        if event.error is None and event.returncode == 0:
            message = f"Command completed in {duration}: {name}"
            await self.context.progress(message)
            return Outcome(OutcomeKind.SUCCESS, message, exit_code=0, elapsed=elapsed)

        error = self._error_for(event)
        code = exit_code(event.returncode) if event.error is None else None

        if self.command.can_fail:
            message = f"Warning, command failed (ignoring error) in {duration}: {error}"
            log.warning("[%s] %s", name, message)
            if not self._timed_out:
                await self.context.progress(message)
            return Outcome(
                OutcomeKind.IGNORED_FAILURE, message,
                exit_code=code, error=error, elapsed=elapsed,
            )

        if self._timed_out:
            message = self._timeout_message
            return Outcome(
                OutcomeKind.TIMED_OUT, message,
                exit_code=code, error=error, elapsed=elapsed,
            )

        if code is not None:
            if code in self.command.allowed_exit_codes:
                message = f"Command completed with allowed status code in {duration}: {code}"
                log.info("[%s] %s", name, message)
                await self.context.progress(message)
                return Outcome(
                    OutcomeKind.ALLOWED_EXIT_CODE, message,
                    exit_code=code, elapsed=elapsed,
                )
            message = f"Command exited with status code in {duration}: {code}"
            await self.context.progress(message)
            return Outcome(
                OutcomeKind.FAILED, message,
                exit_code=code, error=error, elapsed=elapsed,
            )

        message = f"Command failed in {duration}: {error}"
        await self.context.progress(message)
        return Outcome(OutcomeKind.FAILED, message, error=error, elapsed=elapsed)

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _error_for(self, event: ProcessExit) -> Exception:
        if event.error is not None:
            return UnclassifiedWaitError(f"waiting for command failed: {event.error}")
        code = exit_code(event.returncode)
        if code is not None:
            return ExitStatusError(code)
        if self._timed_out:
            return RuntimeTerminationError(
                f"killed after deadline ({describe_returncode(event.returncode)})"
            )
        if self.context.cancelled.is_set():
            return RuntimeTerminationError(
                f"caller disconnected ({describe_returncode(event.returncode)})"
            )
        return UnclassifiedWaitError(describe_returncode(event.returncode))

    async def _setup_failed(self, exc: SetupError) -> Outcome:
        message = f"Command failed to start: {exc}"
        await self.context.progress(message)
        return Outcome(OutcomeKind.FAILED, message, error=exc)

    async def _wait_for_exit(
        self,
        proc: BoundProcess,
        multiplexer: OutputMultiplexer,
        events: asyncio.Queue,
    ) -> None:
        """Wait for exit, let the scanners flush, then post ProcessExit."""
        try:
            returncode = await proc.wait()
        except Exception as exc:
            log.exception("[%s] Waiting for command failed", self.command.name)
            await events.put(ProcessExit(returncode=None, error=exc))
            return
        await multiplexer.drain(self.drain_timeout)
        await events.put(ProcessExit(returncode=returncode))
