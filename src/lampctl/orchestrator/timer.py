"""Cron-driven mode timers.

Each configured timer keeps one mode active for ``duration`` seconds starting
at every occurrence of its cron schedule. Occurrences are evaluated lazily in
local time, starting one duration in the past, so a run that began before the
process started but has not yet finished is picked up immediately.

Runs that touch or overlap (the next run starts at or before the current
run's stop time) are merged: the mode stays enabled across them instead of
being switched off and straight back on.
"""

from __future__ import annotations

import asyncio
from datetime import datetime, timedelta
from typing import Awaitable, Callable, Iterator

from croniter import CroniterBadDateError, croniter
from dateutil import tz

from lampctl.config import TimerConfig
from lampctl.logging import bind_trigger_context, get_logger
from lampctl.orchestrator.controller import LampController

logger = get_logger(__name__)

Clock = Callable[[], datetime]
Sleeper = Callable[[float], Awaitable[None]]


def local_now() -> datetime:
    """Current local time as an aware datetime."""
    return datetime.now(tz.tzlocal())


class Timer:
    """Enables a mode for a fixed duration on a cron schedule.

    Attributes:
        mode: Mode switched by this timer.
        schedule: Cron expression in croniter syntax.
        duration: How long each run keeps the mode enabled.
        controller: Controller receiving enable/disable calls.
    """

    def __init__(
        self,
        config: TimerConfig,
        controller: LampController,
        clock: Clock | None = None,
        sleep: Sleeper | None = None,
    ) -> None:
        """Initialize a timer.

        Args:
            config: Timer rule (mode, schedule, duration).
            controller: Controller receiving enable/disable calls.
            clock: Returns the current aware datetime. Defaults to local time.
            sleep: Coroutine function sleeping for a number of seconds.
                Defaults to ``asyncio.sleep``.
        """
        self.mode = config.mode
        self.schedule = config.schedule
        self.duration = timedelta(seconds=config.duration)
        self.controller = controller
        self._clock = clock or local_now
        self._sleep = sleep or asyncio.sleep
        self._logger = logger.bind(component="Timer", mode=self.mode, schedule=self.schedule)

    def occurrences(self, start: datetime) -> Iterator[datetime]:
        """Yield schedule occurrences at or after ``start``, in order.

        The iterator is unbounded for ordinary schedules and stops when
        croniter finds no further matching date.
        """
        # croniter only yields instants strictly after its start time, and all
        # cron instants fall on whole seconds. Starting one second before the
        # first whole second at or after ``start`` makes ``start`` inclusive.
        anchor = start.replace(microsecond=0)
        if anchor < start:
            anchor += timedelta(seconds=1)
        cron = croniter(self.schedule, anchor - timedelta(seconds=1))
        while True:
            try:
                yield cron.get_next(datetime)
            except CroniterBadDateError:
                return

    async def run(self) -> None:
        """Drive the mode through every scheduled run.

        Returns when the schedule has no further occurrences, which does not
        happen for ordinary schedules.

        Raises:
            UnknownModeError: If the timer's mode is not defined.
            OSError: If the controller cannot update the sink.
            OverflowError: If an occurrence cannot be turned into a sleep.
        """
        bind_trigger_context(f"timer:{self.mode}")

        lookback = self._clock() - self.duration
        starts = self.occurrences(lookback)
        start = next(starts, None)
        self._logger.info(
            "timer_started",
            duration_seconds=self.duration.total_seconds(),
            first_start=start.isoformat() if start else None,
        )

        while start is not None:
            await self._sleep_until(start)
            self.controller.enable(self.mode)

            stop = start + self.duration
            next_start = next(starts, None)
            if next_start is None or stop < next_start:
                await self._sleep_until(stop)
                self.controller.disable(self.mode)
            else:
                self._logger.debug(
                    "timer_run_merged",
                    stop=stop.isoformat(),
                    next_start=next_start.isoformat(),
                )
            start = next_start

        self._logger.info("timer_exhausted")

    async def _sleep_until(self, when: datetime) -> None:
        """Sleep until ``when``; return at once if it has already passed."""
        delay = (when - self._clock()).total_seconds()
        if delay <= 0:
            return
        self._logger.debug("timer_sleeping", until=when.isoformat(), seconds=delay)
        await self._sleep(delay)
