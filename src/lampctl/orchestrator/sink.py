"""JSON file sink read by the lamp driver.

The sink holds exactly one command, serialized as compact JSON with sorted
keys. Writes go to a temporary file in the same directory which is then
renamed over the target, so the driver never sees a half-written command.
The replacement keeps the mode of the file it replaces; a new file gets the
usual ``0o666`` minus the process umask, so a driver running as another user
can still read it.
"""

from __future__ import annotations

import json
import os
import stat
import tempfile
from pathlib import Path
from typing import Any

from lampctl.logging import get_logger

logger = get_logger(__name__)


class _Missing:
    """Marker for a sink that holds no command."""

    def __repr__(self) -> str:
        return "MISSING"


# Distinct from None, which is a valid stored command
MISSING: Any = _Missing()


class CommandSink:
    """Output file holding the command the lamp should display.

    Attributes:
        path: Location of the JSON command file.
        write_count: Number of completed writes since construction.
    """

    def __init__(self, path: Path) -> None:
        self.path = Path(path)
        self.write_count = 0
        self._logger = logger.bind(component="CommandSink", path=str(self.path))

    def read(self) -> Any:
        """Return the stored command, or ``MISSING`` if there is none.

        An absent file means no prior command. Content that is not UTF-8
        encoded JSON is reported and also treated as no prior command, so the
        next write replaces it.

        Raises:
            OSError: If the file exists but cannot be read.
        """
        try:
            text = self.path.read_text(encoding="utf-8")
            return json.loads(text)
        except FileNotFoundError:
            return MISSING
        except ValueError as e:
            # UnicodeDecodeError and JSONDecodeError
            self._logger.warning("lamp_command_unreadable", error=str(e))
            return MISSING

    def write(self, command: Any) -> None:
        """Atomically replace the stored command.

        Raises:
            OSError: If the temporary file cannot be created or renamed.
        """
        payload = encode_command(command)
        fd, tmp_name = tempfile.mkstemp(
            prefix=f".{self.path.name}.", suffix=".tmp", dir=self.path.parent
        )
        try:
            os.fchmod(fd, self._target_mode())
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                f.write(payload)
                f.flush()
                os.fsync(f.fileno())
            os.replace(tmp_name, self.path)
        except BaseException:
            try:
                os.unlink(tmp_name)
            except FileNotFoundError:
                pass
            raise

        self.write_count += 1

    def _target_mode(self) -> int:
        """Permission bits for the next replacement of the sink file."""
        try:
            return stat.S_IMODE(os.stat(self.path).st_mode)
        except FileNotFoundError:
            return 0o666 & ~_current_umask()


def _current_umask() -> int:
    # The umask can only be read by setting it
    umask = os.umask(0)
    os.umask(umask)
    return umask


def encode_command(command: Any) -> str:
    """Serialize a command in the stable form stored in the sink."""
    return json.dumps(command, sort_keys=True, separators=(",", ":"))
