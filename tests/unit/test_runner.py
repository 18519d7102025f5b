"""Unit tests for the lamp runner."""

from __future__ import annotations

import asyncio
import json
from datetime import timedelta
from pathlib import Path
from typing import Any

import pytest

from fakes import START, ClockStopped, FakeChanges, FakeClock, until
from lampctl.config import CountFileConfig, LampConfig, LampMode, TimerConfig
from lampctl.orchestrator.runner import LampRunner

QUIET = {"colour": "off"}
BUSY = {"colour": "amber"}


def make_config(**overrides: Any) -> LampConfig:
    """Two-mode config; ``busy`` outranks ``quiet``."""
    values: dict[str, Any] = {
        "default_mode": "quiet",
        "modes": [
            LampMode(name="quiet", command=QUIET),
            LampMode(name="busy", command=BUSY),
        ],
    }
    values.update(overrides)
    return LampConfig(**values)


def record_writes(runner: LampRunner) -> list[Any]:
    """Capture every command the runner's sink writes."""
    writes: list[Any] = []
    sink = runner.controller.sink
    original = sink.write

    def write(command: Any) -> None:
        writes.append(command)
        original(command)

    sink.write = write  # type: ignore[method-assign]
    return writes


def test_build_tasks_names(tmp_path: Path) -> None:
    """Test that every trigger gets a named task."""
    config = make_config(
        timers=[
            TimerConfig(mode="busy", schedule="0 9 * * *", duration=60),
            TimerConfig(mode="quiet", schedule="0 18 * * *", duration=60),
        ]
    )
    runner = LampRunner(config, tmp_path / "command.json")

    coros = runner.build_tasks()
    try:
        assert list(coros) == ["timer-0:busy", "timer-1:quiet", "count-files"]
    finally:
        for coro in coros.values():
            coro.close()


@pytest.mark.asyncio
async def test_no_triggers_writes_default_and_returns(tmp_path: Path) -> None:
    """Test that a config without triggers shows the default mode and finishes."""
    output = tmp_path / "command.json"
    runner = LampRunner(make_config(), output)

    await asyncio.wait_for(runner.run(), timeout=2)

    assert json.loads(output.read_text()) == QUIET


@pytest.mark.asyncio
async def test_timer_alternates_modes(tmp_path: Path) -> None:
    """Test a timer switching busy on and off over the default mode."""
    output = tmp_path / "command.json"
    clock = FakeClock(START, limit=START + timedelta(seconds=150))
    config = make_config(
        timers=[TimerConfig(mode="busy", schedule="* * * * *", duration=30)]
    )
    runner = LampRunner(config, output, clock=clock, sleep=clock.sleep)
    writes = record_writes(runner)

    snapshots: dict[float, Any] = {}
    clock.on_sleep = lambda now: snapshots.setdefault(
        (now - START).total_seconds(), json.loads(output.read_text())
    )

    with pytest.raises(ClockStopped):
        await runner.run()

    assert writes == [QUIET, BUSY, QUIET, BUSY, QUIET, BUSY, QUIET]
    assert snapshots[0] == BUSY
    assert snapshots[30] == QUIET
    assert runner.controller.active_modes == ["quiet"]


@pytest.mark.asyncio
async def test_existing_sink_is_not_rewritten(tmp_path: Path) -> None:
    """Test that a restart over an up-to-date sink does not write."""
    output = tmp_path / "command.json"
    output.write_text('{"colour":"off"}')
    runner = LampRunner(make_config(), output)
    writes = record_writes(runner)

    await runner.run()

    assert writes == []


@pytest.mark.asyncio
async def test_first_failure_cancels_other_triggers(
    tmp_path: Path, fake_changes: FakeChanges
) -> None:
    """Test that a failing timer stops the count file watcher too."""
    clock = FakeClock(START, limit=START + timedelta(seconds=45))
    config = make_config(
        timers=[TimerConfig(mode="busy", schedule="* * * * *", duration=30)],
        count_files=[CountFileConfig(mode="busy", file=tmp_path / "unread")],
    )
    runner = LampRunner(
        config,
        tmp_path / "command.json",
        clock=clock,
        sleep=clock.sleep,
        watch_factory=fake_changes,
    )

    async def slow_sleep(seconds: float) -> None:
        # Let the watcher subscribe before the clock runs out
        await until(lambda: fake_changes.dirs is not None)
        await clock.sleep(seconds)

    for timer in runner.timers:
        timer._sleep = slow_sleep

    with pytest.raises(ClockStopped):
        await asyncio.wait_for(runner.run(), timeout=2)

    assert fake_changes.dirs == [tmp_path]
    assert fake_changes.closed


@pytest.mark.asyncio
async def test_watcher_failure_surfaces(tmp_path: Path, fake_changes: FakeChanges) -> None:
    """Test that a count file binding to an undefined mode fails the run."""
    count_file = tmp_path / "unread"
    count_file.write_text("3")
    config = make_config(count_files=[CountFileConfig(mode="busy", file=count_file)])
    runner = LampRunner(config, tmp_path / "command.json", watch_factory=fake_changes)
    runner.count_watcher.modes[count_file] = "party"

    with pytest.raises(KeyError, match="party"):
        await asyncio.wait_for(runner.run(), timeout=2)


@pytest.mark.asyncio
async def test_cancelling_runner_cancels_triggers(
    tmp_path: Path, fake_changes: FakeChanges
) -> None:
    """Test that stopping the runner unwinds every trigger task."""
    count_file = tmp_path / "unread"
    config = make_config(count_files=[CountFileConfig(mode="busy", file=count_file)])
    output = tmp_path / "command.json"
    runner = LampRunner(config, output, watch_factory=fake_changes)

    task = asyncio.create_task(runner.run())
    await until(lambda: fake_changes.dirs is not None)

    count_file.write_text("1")
    fake_changes.push(count_file)
    await until(lambda: json.loads(output.read_text()) == BUSY)

    task.cancel()
    with pytest.raises(asyncio.CancelledError):
        await task
    assert fake_changes.closed
