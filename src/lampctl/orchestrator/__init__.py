"""Arbitration engine for lampctl.

This module implements the mode controller and its command sink, the cron
timers, the count file watcher, and the runner that ties them together.
"""

from __future__ import annotations

from lampctl.orchestrator.controller import (
    LampController,
    NoActiveModeError,
    UnknownModeError,
)
from lampctl.orchestrator.file_watcher import (
    CountFileWatcher,
    WatchStreamClosedError,
    parse_count,
    read_count,
)
from lampctl.orchestrator.runner import LampRunner
from lampctl.orchestrator.sink import MISSING, CommandSink, encode_command
from lampctl.orchestrator.timer import Timer, local_now

__all__ = [
    # Controller
    "LampController",
    "NoActiveModeError",
    "UnknownModeError",
    # Sink
    "CommandSink",
    "MISSING",
    "encode_command",
    # Timer
    "Timer",
    "local_now",
    # Count file watcher
    "CountFileWatcher",
    "WatchStreamClosedError",
    "parse_count",
    "read_count",
    # Runner
    "LampRunner",
]
