"""Lamp mode arbitration.

The controller owns the set of active modes and is the only writer of the
command sink. Modes are ranked by their position in the configuration: the
mode defined last has the highest priority, and the lamp always shows the
command of the highest-ranked active mode.

Timers and the count file watcher call ``enable``/``disable`` concurrently.
Each call mutates the active set, reads the sink back, and writes it if the
winning command changed, all under a single lock, so the sink only ever moves
between states implied by some complete sequence of calls.

Example:
    >>> controller = LampController(CommandSink(path), modes, default_mode="quiet")
    >>> controller.enable("quiet")
    >>> controller.enable("busy")    # busy outranks quiet, its command is written
    >>> controller.disable("busy")   # quiet's command is restored
"""

from __future__ import annotations

import threading
from typing import Any, Sequence

from lampctl.config import LampMode
from lampctl.logging import get_logger
from lampctl.orchestrator.sink import MISSING, CommandSink

logger = get_logger(__name__)

Priority = int


class UnknownModeError(KeyError):
    """Raised when a mode name is not in the registry.

    Attributes:
        mode: The unrecognized mode name.
    """

    def __init__(self, mode: str):
        self.mode = mode
        super().__init__(mode)

    def __str__(self) -> str:
        return f"Unrecognized mode: {self.mode}"


class NoActiveModeError(RuntimeError):
    """Raised when the top command is requested while no mode is active.

    The controller starts with its default mode active, so this only happens
    if every mode, the default included, has been explicitly disabled.
    """


class LampController:
    """Priority arbitration between lamp modes.

    Attributes:
        sink: Output file the winning command is persisted to.
        default_mode: Mode seeded into the active set at construction.
    """

    def __init__(self, sink: CommandSink, modes: Sequence[LampMode], default_mode: str) -> None:
        """Build the mode registry and seed the active set.

        Args:
            sink: Command sink to persist the winning command to.
            modes: Modes from lowest to highest priority.
            default_mode: Mode that starts active. Nothing is written until
                the first ``enable`` or ``disable``.

        Raises:
            ValueError: If ``modes`` is empty or contains duplicate names.
            UnknownModeError: If ``default_mode`` is not one of ``modes``.
        """
        if not modes:
            raise ValueError("At least one mode must be defined")

        self.sink = sink
        self._names: list[str] = [mode.name for mode in modes]
        self._commands: list[Any] = [mode.command for mode in modes]
        self._priorities: dict[str, Priority] = {
            name: rank for rank, name in enumerate(self._names)
        }
        if len(self._priorities) != len(self._names):
            raise ValueError("Mode names must be unique")

        self.default_mode = default_mode
        self._active: set[Priority] = {self.priority(default_mode)}
        self._lock = threading.Lock()
        self._logger = logger.bind(component="LampController")

    def enable(self, mode: str) -> bool:
        """Mark a mode active and persist the resulting command.

        Args:
            mode: Mode name.

        Returns:
            True if the sink was written, False if it already held the command.

        Raises:
            UnknownModeError: If the mode is not defined.
            OSError: If the sink cannot be read or written.
        """
        priority = self.priority(mode)
        with self._lock:
            self._active.add(priority)
            self._logger.info("mode_enabled", mode=mode)
            return self._update_lamp()

    def disable(self, mode: str) -> bool:
        """Mark a mode inactive and persist the resulting command.

        Args:
            mode: Mode name.

        Returns:
            True if the sink was written, False if it already held the command.

        Raises:
            UnknownModeError: If the mode is not defined.
            NoActiveModeError: If this leaves no mode active.
            OSError: If the sink cannot be read or written.
        """
        priority = self.priority(mode)
        with self._lock:
            self._active.discard(priority)
            self._logger.info("mode_disabled", mode=mode)
            return self._update_lamp()

    def priority(self, mode: str) -> Priority:
        """Return a mode's rank; larger ranks win."""
        try:
            return self._priorities[mode]
        except KeyError:
            raise UnknownModeError(mode) from None

    @property
    def active_modes(self) -> list[str]:
        """Names of the active modes, lowest priority first."""
        with self._lock:
            return [self._names[rank] for rank in sorted(self._active)]

    @property
    def top_mode(self) -> str:
        """Name of the mode whose command the lamp should show."""
        with self._lock:
            return self._names[self._top_priority()]

    def top_command(self) -> Any:
        """Command of the highest-priority active mode."""
        with self._lock:
            return self._commands[self._top_priority()]

    # ------------------------------------------------------------------
    # Internal helpers (caller holds the lock)
    # ------------------------------------------------------------------

    def _top_priority(self) -> Priority:
        if not self._active:
            raise NoActiveModeError("No modes present")
        return max(self._active)

    def _update_lamp(self) -> bool:
        """Write the top command to the sink unless it is already there."""
        new_command = self._commands[self._top_priority()]
        old_command = self.sink.read()
        if old_command is not MISSING and old_command == new_command:
            self._logger.debug("lamp_command_unchanged", mode=self._names[max(self._active)])
            return False

        self.sink.write(new_command)
        self._logger.info("lamp_command_written", mode=self._names[max(self._active)])
        return True
