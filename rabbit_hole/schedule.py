"""Interval run mode: start the relay on a cron schedule for a fixed duration.

Each run is ``start()`` -> wait ``run_duration_seconds`` -> ``stop()``. The
next fire time is computed after the previous run has stopped, so runs never
overlap even when the duration is longer than the schedule period.

Example:
    >>> runner = IntervalRunner(relay, "*/5 * * * *", run_duration_seconds=60, stop_event=stop)
    >>> await runner.run()  # returns once stop_event is set
"""
from __future__ import annotations

import asyncio
import logging
from datetime import datetime
from typing import Callable

from croniter import croniter

from rabbit_hole.exceptions import ConfigError
from rabbit_hole.relay import RabbitHole


log = logging.getLogger(__name__)


class IntervalRunner:
    def __init__(
        self,
        relay: RabbitHole,
        schedule: str,
        run_duration_seconds: int,
        stop_event: asyncio.Event,
        now: Callable[[], datetime] = datetime.now,
        logger: logging.Logger | None = None,
    ) -> None:
        if not croniter.is_valid(schedule):
            raise ConfigError(f"Invalid cron schedule: {schedule!r}")
        if run_duration_seconds <= 0:
            raise ConfigError("run duration must be a positive number of seconds")
        self.relay = relay
        self.schedule = schedule
        self.run_duration_seconds = run_duration_seconds
        self.stop_event = stop_event
        self.now = now
        self.logger = logger or log

    def seconds_until_next_run(self) -> float:
        current = self.now()
        next_fire = croniter(self.schedule, current).get_next(datetime)
        return max(0.0, (next_fire - current).total_seconds())

    async def _sleep_or_stop(self, seconds: float) -> bool:
        """Sleep up to ``seconds``; return True if stop was requested meanwhile."""
        try:
            await asyncio.wait_for(self.stop_event.wait(), timeout=seconds)
        except asyncio.TimeoutError:
            return False
        return True

    async def run_once(self) -> None:
        self.logger.info("rabbit_hole interval started. Running for %d seconds...", self.run_duration_seconds)
        await self.relay.start()
        try:
            await self._sleep_or_stop(self.run_duration_seconds)
        finally:
            await self.relay.stop()
        self.logger.info("rabbit_hole interval completed")

    async def run(self) -> None:
        """Run on schedule until ``stop_event`` is set. A failed start propagates."""
        while not self.stop_event.is_set():
            delay = self.seconds_until_next_run()
            self.logger.debug("Next interval run in %.1f seconds", delay)
            if await self._sleep_or_stop(delay):
                break
            await self.run_once()
