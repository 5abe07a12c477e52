"""Deadline ticker driven by an exponential backoff schedule."""

from __future__ import annotations

import asyncio
import logging
import random
import time
from collections.abc import Callable

from ..config import PollSettings
from ..models import DeadlineTick

log = logging.getLogger(__name__)


class ExponentialBackoff:
    """Growing, jittered intervals bounded by a maximum elapsed time."""

    def __init__(
        self,
        settings: PollSettings,
        *,
        clock: Callable[[], float] = time.monotonic,
        rand: Callable[[], float] = random.random,
    ) -> None:
        self.settings = settings
        self._clock = clock
        self._rand = rand
        self.reset()

    def reset(self) -> None:
        self._current = self.settings.initial_interval
        self._start = self._clock()

    @property
    def elapsed(self) -> float:
        return self._clock() - self._start

    def next_backoff(self) -> float | None:
        """Seconds until the next tick, or None once the deadline has passed."""
        remaining = self.settings.max_elapsed_time - self.elapsed
        if remaining <= 0:
            return None

        delta = self.settings.randomization_factor * self._current
        low = self._current - delta
        interval = low + self._rand() * (2 * delta)

        if self._current >= self.settings.max_interval / self.settings.multiplier:
            self._current = self.settings.max_interval
        else:
            self._current *= self.settings.multiplier

        # Never sleep past the deadline, so expiry is noticed on time.
        return min(interval, remaining)


class DeadlineTicker:
    """Posts :class:`DeadlineTick` events into the supervisor's queue.

    The first tick is posted immediately.  When the backoff runs out a
    single ``expired`` tick is posted and the ticker ends by itself.
    """

    def __init__(
        self,
        backoff: ExponentialBackoff,
        events: asyncio.Queue,
    ) -> None:
        self._backoff = backoff
        self._events = events
        self._task: asyncio.Task[None] | None = None

    def start(self) -> None:
        self._backoff.reset()
        self._task = asyncio.create_task(self._run(), name="deadline-ticker")

    def stop(self) -> None:
        if self._task is not None and not self._task.done():
            self._task.cancel()

    async def _run(self) -> None:
        await self._events.put(DeadlineTick(elapsed=self._backoff.elapsed))
        while True:
            delay = self._backoff.next_backoff()
            if delay is None:
                log.debug("Deadline reached after %.1fs", self._backoff.elapsed)
                await self._events.put(
                    DeadlineTick(elapsed=self._backoff.elapsed, expired=True)
                )
                return
            await asyncio.sleep(delay)
            await self._events.put(DeadlineTick(elapsed=self._backoff.elapsed))
