"""Top-level lamp runner.

Wires the controller to its triggers: enables the default mode, then runs
every timer and the count file watcher as concurrent asyncio tasks sharing
one controller. The first task to fail takes the rest down with it: a lamp
stuck on a stale command is worse than a process that visibly exited.
"""

from __future__ import annotations

import asyncio
from pathlib import Path
from typing import Any, Coroutine

from lampctl.config import LampConfig
from lampctl.logging import get_logger
from lampctl.orchestrator.controller import LampController
from lampctl.orchestrator.file_watcher import CountFileWatcher, WatchFactory
from lampctl.orchestrator.sink import CommandSink
from lampctl.orchestrator.timer import Clock, Sleeper, Timer

logger = get_logger(__name__)


class LampRunner:
    """Runs all triggers of a configuration against one controller.

    Attributes:
        config: Validated lamp configuration.
        controller: Shared arbitration controller.
        timers: One timer per configured schedule.
        count_watcher: Watcher for all configured count files.
    """

    def __init__(
        self,
        config: LampConfig,
        output_file: Path,
        clock: Clock | None = None,
        sleep: Sleeper | None = None,
        watch_factory: WatchFactory | None = None,
    ) -> None:
        """Build the controller and triggers.

        Args:
            config: Validated lamp configuration.
            output_file: Path of the command sink.
            clock: Clock handed to every timer (defaults to local time).
            sleep: Sleep function handed to every timer.
            watch_factory: Change source for the count file watcher.
        """
        self.config = config
        self.controller = LampController(
            CommandSink(output_file), config.modes, config.default_mode
        )
        self.timers = [
            Timer(timer_config, self.controller, clock=clock, sleep=sleep)
            for timer_config in config.timers
        ]
        self.count_watcher = CountFileWatcher(
            config.count_files,
            self.controller,
            debounce_ms=config.watcher.debounce_ms,
            watch_factory=watch_factory,
        )
        self._logger = logger.bind(component="LampRunner")

    def build_tasks(self) -> dict[str, Coroutine[Any, Any, None]]:
        """Return the trigger coroutines keyed by task name."""
        coros: dict[str, Coroutine[Any, Any, None]] = {}
        for index, timer in enumerate(self.timers):
            coros[f"timer-{index}:{timer.mode}"] = timer.run()
        coros["count-files"] = self.count_watcher.run()
        return coros

    async def run(self) -> None:
        """Enable the default mode and run all triggers until one fails.

        Raises:
            Exception: The first error raised by any trigger task, after the
                remaining tasks have been cancelled.
        """
        self.controller.enable(self.config.default_mode)

        tasks = [
            asyncio.create_task(coro, name=name) for name, coro in self.build_tasks().items()
        ]
        self._logger.info(
            "lamp_runner_started",
            default_mode=self.config.default_mode,
            tasks=[task.get_name() for task in tasks],
        )

        try:
            done, pending = await asyncio.wait(tasks, return_when=asyncio.FIRST_EXCEPTION)
        except asyncio.CancelledError:
            await _cancel_all(tasks)
            raise

        failed = [task for task in done if not task.cancelled() and task.exception()]
        if failed:
            await _cancel_all(pending)
            task = failed[0]
            self._logger.error(
                "lamp_task_failed",
                task=task.get_name(),
                error=str(task.exception()),
            )
            raise task.exception()  # type: ignore[misc]

        self._logger.info("lamp_runner_finished")


async def _cancel_all(tasks: Any) -> None:
    """Cancel tasks and wait for them to unwind."""
    for task in tasks:
        task.cancel()
    await asyncio.gather(*tasks, return_exceptions=True)
