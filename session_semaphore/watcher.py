"""Status file change subscription.

Combines native file notifications (watchdog) with a stat-based polling
fallback behind one interface: the owner gets a "changed" tick whenever
the file may have changed, whichever mechanism noticed it first.

Writers replace the file by renaming a temp file over it, so the watch is
placed on the parent directory and events are filtered by file name. When
the file is deleted or renamed away, the watch is torn down and
re-established after a short delay.
"""

import asyncio
import logging
import os
from enum import Enum
from pathlib import Path
from typing import Callable, Optional

from watchdog.events import FileSystemEvent, FileSystemEventHandler
from watchdog.observers import Observer

logger = logging.getLogger(__name__)


class ChangeKind(str, Enum):
    CHANGED = "changed"
    REMOVED = "removed"


class StatusFileHandler(FileSystemEventHandler):
    """Forwards events concerning one file; runs on the observer thread."""

    def __init__(self, target: Path, notify: Callable[[ChangeKind], None]):
        super().__init__()
        self.target = target
        self.notify = notify

    def _is_target(self, path) -> bool:
        if not path:
            return False
        return Path(os.fsdecode(path)) == self.target

    def on_created(self, event: FileSystemEvent) -> None:
        if not event.is_directory and self._is_target(event.src_path):
            self.notify(ChangeKind.CHANGED)

    def on_modified(self, event: FileSystemEvent) -> None:
        if not event.is_directory and self._is_target(event.src_path):
            self.notify(ChangeKind.CHANGED)

    def on_deleted(self, event: FileSystemEvent) -> None:
        if self._is_target(event.src_path):
            self.notify(ChangeKind.REMOVED)

    def on_moved(self, event: FileSystemEvent) -> None:
        # Atomic replace: temp file renamed onto the target
        if self._is_target(getattr(event, "dest_path", None)):
            self.notify(ChangeKind.CHANGED)
        elif self._is_target(event.src_path):
            self.notify(ChangeKind.REMOVED)


class StatusFileWatcher:
    """Watches the status file and calls on_change on the event loop.

    Example:
        >>> watcher = StatusFileWatcher(path, on_change=reload_event.set)
        >>> await watcher.start()
        >>> ...
        >>> await watcher.stop()
    """

    def __init__(
        self,
        path: Path,
        on_change: Callable[[], None],
        poll_interval: float = 0.25,
        rewatch_delay: float = 0.5,
        retry_delay: float = 1.0,
    ):
        """Initialize the watcher.

        Args:
            path: File to watch
            on_change: Called on the event loop thread for every change tick
            poll_interval: Seconds between fallback stat polls
            rewatch_delay: Delay before re-establishing a watch after delete/rename
            retry_delay: Delay before retrying a watch that failed to start
        """
        self.path = Path(path)
        self.on_change = on_change
        self.poll_interval = poll_interval
        self.rewatch_delay = rewatch_delay
        self.retry_delay = retry_delay

        self.observer: Optional[Observer] = None
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._poll_task: Optional[asyncio.Task] = None
        self._rewatch_task: Optional[asyncio.Task] = None
        self._signature: Optional[tuple] = None
        self.running = False

    async def start(self) -> None:
        if self.running:
            logger.warning("Status file watcher already running")
            return
        self._loop = asyncio.get_running_loop()
        self.running = True
        self._signature = self._stat_signature()
        self._start_observer()
        self._poll_task = asyncio.create_task(self._poll_loop())
        logger.info(f"Watching {self.path}")

    async def stop(self) -> None:
        if not self.running:
            return
        self.running = False
        for task in (self._poll_task, self._rewatch_task):
            if task is not None:
                task.cancel()
                try:
                    await task
                except asyncio.CancelledError:
                    pass
        self._poll_task = None
        self._rewatch_task = None
        await asyncio.to_thread(self._stop_observer)
        logger.info("Status file watcher stopped")

    @property
    def is_watching(self) -> bool:
        """True while a native notification watch is active."""
        return self.observer is not None

    def _start_observer(self) -> None:
        handler = StatusFileHandler(self.path, self._notify_threadsafe)
        observer = Observer()
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            observer.schedule(handler, str(self.path.parent), recursive=False)
            observer.start()
        except OSError as e:
            logger.warning(f"File notifications unavailable for {self.path.parent}: {e}; polling only")
            self._schedule_rewatch(self.retry_delay)
            return
        self.observer = observer

    def _stop_observer(self) -> None:
        observer, self.observer = self.observer, None
        if observer is not None:
            observer.stop()
            observer.join(timeout=2.0)

    def _notify_threadsafe(self, kind: ChangeKind) -> None:
        loop = self._loop
        if loop is None or loop.is_closed():
            return
        loop.call_soon_threadsafe(self._dispatch, kind)

    def _dispatch(self, kind: ChangeKind) -> None:
        if not self.running:
            return
        logger.debug(f"Status file {kind.value}")
        if kind == ChangeKind.REMOVED:
            self._schedule_rewatch(self.rewatch_delay)
        self._emit()

    def _emit(self) -> None:
        self._signature = self._stat_signature()
        self.on_change()

    def _schedule_rewatch(self, delay: float) -> None:
        if self._rewatch_task is not None and not self._rewatch_task.done():
            return
        self._rewatch_task = asyncio.create_task(self._rewatch(delay))

    async def _rewatch(self, delay: float) -> None:
        await asyncio.sleep(delay)
        if not self.running:
            return
        await asyncio.to_thread(self._stop_observer)
        self._rewatch_task = None
        self._start_observer()
        self._emit()

    async def _poll_loop(self) -> None:
        while self.running:
            await asyncio.sleep(self.poll_interval)
            try:
                signature = self._stat_signature()
            except OSError as e:
                logger.debug(f"Cannot stat {self.path}: {e}")
                continue
            if signature != self._signature:
                self._emit()

    def _stat_signature(self) -> Optional[tuple]:
        try:
            st = self.path.stat()
        except FileNotFoundError:
            return None
        return (st.st_ino, st.st_mtime_ns, st.st_size)
