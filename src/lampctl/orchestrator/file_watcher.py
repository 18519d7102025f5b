"""Count file watcher.

Count files are small text files maintained by other programs (an unread
mail counter, a CI failure count, ...). Each file is bound to a mode: while
the file holds a number above zero the mode is enabled, otherwise it is
disabled. Missing files and anything that does not parse as a non-negative
integer count as zero, so a half-written file turns the mode off rather than
stopping the watcher.

The watcher subscribes to the *parent directories* of the count files rather
than the files themselves. Programs that write by replacing the file
(write a temporary file, rename it over the old one) change the inode on
every update, and a watch on the file would silently go stale after the
first replacement.

Notifications arrive in bursts, so after the first one the watcher waits a
short debounce interval, drains everything already queued, and re-reads each
touched file once. If the notification stream fails, the directories are
subscribed again and every count file is re-read, since changes may have been
missed in between.
"""

from __future__ import annotations

import asyncio
import re
from pathlib import Path
from typing import Any, AsyncIterator, Callable, Iterable, Sequence

from watchfiles import awatch

from lampctl.config import CountFileConfig
from lampctl.logging import bind_trigger_context, get_logger
from lampctl.orchestrator.controller import LampController

logger = get_logger(__name__)

# A batch of (change, path) pairs, as yielded by watchfiles.awatch
ChangeBatch = Iterable[tuple[Any, str]]
WatchFactory = Callable[[Sequence[Path]], AsyncIterator[Any]]

_COUNT_PATTERN = re.compile(r"\+?[0-9]+")
# Counts are unsigned 64-bit; anything larger is malformed
_MAX_COUNT = 2**64 - 1
_CLOSED = object()


class WatchStreamClosedError(RuntimeError):
    """Raised when the filesystem notification stream ends for good.

    A lost subscription cannot be recovered without restarting, so the
    watcher stops instead of leaving the lamp in a stale state.
    """


def parse_count(text: str) -> int:
    """Parse count file content, treating anything malformed as zero."""
    text = text.strip()
    if not _COUNT_PATTERN.fullmatch(text):
        return 0
    count = int(text)
    return count if count <= _MAX_COUNT else 0


def read_count(path: Path) -> int:
    """Read a count file. A missing file counts as zero.

    Raises:
        OSError: If the file exists but cannot be read.
    """
    try:
        text = path.read_text(encoding="utf-8", errors="replace")
    except FileNotFoundError:
        return 0
    return parse_count(text)


def _default_watch_factory(dirs: Sequence[Path]) -> AsyncIterator[Any]:
    # No watch_filter: count files may have any name, including ones the
    # default filter drops as editor or VCS noise.
    return awatch(
        *dirs, recursive=False, watch_filter=None, ignore_permission_denied=True
    )


class CountFileWatcher:
    """Enables and disables modes from the content of count files.

    Attributes:
        modes: Absolute count file path to mode name.
        controller: Controller receiving enable/disable calls.
        debounce_seconds: Wait after the first notification of a burst.
    """

    def __init__(
        self,
        configs: Iterable[CountFileConfig],
        controller: LampController,
        debounce_ms: int = 10,
        watch_factory: WatchFactory | None = None,
    ) -> None:
        """Initialize the watcher.

        Args:
            configs: Count file bindings. A path bound twice keeps the last mode.
            controller: Controller receiving enable/disable calls.
            debounce_ms: Milliseconds to wait for a burst of notifications to settle.
            watch_factory: Returns an async iterator of change batches for the
                given directories. Defaults to ``watchfiles.awatch``.
        """
        self.modes: dict[Path, str] = {}
        for config in configs:
            self.modes[Path(config.file)] = config.mode
        self.controller = controller
        self.debounce_seconds = debounce_ms / 1000
        self._watch_factory = watch_factory or _default_watch_factory
        self._stream_error: BaseException | None = None
        self._logger = logger.bind(component="CountFileWatcher")

    @property
    def watch_dirs(self) -> list[Path]:
        """Distinct parent directories of the count files."""
        return sorted({path.parent for path in self.modes})

    async def run(self) -> None:
        """Apply every count file, then re-apply files as they change.

        Returns immediately if no count files are configured.

        Raises:
            WatchStreamClosedError: If the notification stream ends.
            UnknownModeError: If a binding names an undefined mode.
            OSError: If the controller cannot update the sink.
        """
        bind_trigger_context("count-files")

        if not self.modes:
            self._logger.info("count_watcher_idle")
            return

        queue: asyncio.Queue[Any] = asyncio.Queue()
        pump = asyncio.create_task(self._pump(queue), name="count-files-pump")
        self._logger.info(
            "count_watcher_started",
            files=[str(path) for path in sorted(self.modes)],
            dirs=[str(path) for path in self.watch_dirs],
        )

        try:
            # Every file is applied once at startup
            touched: set[Path] = set(self.modes)
            while True:
                for path in sorted(touched):
                    self.update_path(path)
                touched = await self.wait_for_changes(queue)
        finally:
            pump.cancel()
            try:
                await pump
            except asyncio.CancelledError:
                pass

    def update_path(self, path: Path) -> None:
        """Re-read one count file and switch its mode accordingly.

        Read failures other than a missing file are logged and skipped.
        """
        mode = self.modes[path]
        try:
            count = read_count(path)
        except OSError as e:
            self._logger.warning(
                "count_file_update_failed",
                path=str(path),
                mode=mode,
                error=str(e),
            )
            return

        self._logger.debug("count_file_read", path=str(path), mode=mode, count=count)
        if count > 0:
            self.controller.enable(mode)
        else:
            self.controller.disable(mode)

    async def wait_for_changes(self, queue: asyncio.Queue[Any]) -> set[Path]:
        """Wait for a burst of notifications and return the count files touched.

        Raises:
            WatchStreamClosedError: If the notification stream has ended.
        """
        items = [await queue.get()]
        await asyncio.sleep(self.debounce_seconds)
        while True:
            try:
                items.append(queue.get_nowait())
            except asyncio.QueueEmpty:
                break

        touched: set[Path] = set()
        for item in items:
            if item is _CLOSED:
                raise WatchStreamClosedError(
                    "File change notification stream ended"
                ) from self._stream_error
            if isinstance(item, BaseException):
                # Events may have been lost while resubscribing
                self._logger.error("file_watch_error", error=str(item))
                touched.update(self.modes)
                continue
            for _change, raw_path in item:
                path = Path(raw_path)
                if path in self.modes:
                    touched.add(path)
        return touched

    async def _pump(self, queue: asyncio.Queue[Any]) -> None:
        """Forward change batches from the notification stream onto ``queue``.

        An error raised by the stream is queued as an item of its own and the
        directories are subscribed again. A second error before any batch has
        been delivered means the subscription cannot be restored, and the
        stream is closed.
        """
        failed_since_batch = False
        try:
            while True:
                try:
                    async for changes in self._watch_factory(self.watch_dirs):
                        failed_since_batch = False
                        queue.put_nowait(changes)
                except Exception as e:
                    if failed_since_batch:
                        self._stream_error = e
                        self._logger.error(
                            "file_watch_stream_failed", error=str(e), exc_info=True
                        )
                        return
                    failed_since_batch = True
                    self._logger.warning("file_watch_resubscribing", error=str(e))
                    queue.put_nowait(e)
                    continue
                return
        finally:
            queue.put_nowait(_CLOSED)
