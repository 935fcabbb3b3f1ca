"""Status file persistence.

The status file is read and written whole. Writers serialize through the
DirectoryLock; the file itself is always replaced atomically (temp file +
rename) so lock-free readers never observe a partial document.
"""

import logging
import os
import tempfile
from contextlib import contextmanager
from pathlib import Path
from typing import Callable, Iterator, Mapping, TypeVar

from .config import SemaphoreConfig
from .lock import DirectoryLock
from .models import StatusDocument

logger = logging.getLogger(__name__)

T = TypeVar("T")


class StatusStore:
    """Shared status document guarded by a cross-process lock.

    Example:
        >>> store = StatusStore.from_config(SemaphoreConfig.from_env())
        >>> with store.transaction() as document:
        ...     document.instances.pop("abc", None)
    """

    def __init__(self, path: Path, lock: DirectoryLock):
        """Initialize the store.

        Args:
            path: Status file path.
            lock: Lock guarding every read-modify-write cycle.
        """
        self.path = Path(path)
        self.lock = lock

    @classmethod
    def from_config(cls, config: SemaphoreConfig) -> "StatusStore":
        lock = DirectoryLock(
            config.lock_dir,
            poll_interval=config.lock_poll_interval,
            stale_after=config.lock_stale_after,
            timeout=config.lock_timeout,
        )
        return cls(config.status_file, lock)

    def read(self) -> StatusDocument:
        """Read the document without locking.

        A missing, empty or unparsable file reads as an empty document.
        """
        document, _ = self._load()
        return document

    def _load(self) -> tuple[StatusDocument, bool]:
        """Read the document, also reporting whether the file was healthy."""
        try:
            raw = self.path.read_bytes()
        except FileNotFoundError:
            return StatusDocument.empty(), False
        except OSError as e:
            logger.warning(f"Cannot read status file {self.path}: {e}")
            return StatusDocument.empty(), False

        if not raw.strip():
            return StatusDocument.empty(), False
        try:
            return StatusDocument.from_json(raw), True
        except ValueError as e:
            logger.warning(f"Status file {self.path} is not a valid document: {e}")
            return StatusDocument.empty(), False

    @contextmanager
    def transaction(self) -> Iterator[StatusDocument]:
        """Hold the lock around a read-modify-write of the document.

        The yielded document is written back only if it changed and only if
        the block completes without raising. The lock is released on every
        exit path.
        """
        with self.lock:
            # A missing or corrupt file is re-initialized rather than treated as fatal
            document, healthy = self._load()
            before = document.to_json()
            yield document
            after = document.to_json()
            if after != before or not healthy:
                self._write(after)

    def with_lock(self, action: Callable[[StatusDocument], T]) -> T:
        """Apply action to the document under the lock and return its result."""
        with self.transaction() as document:
            return action(document)

    def ensure_exists(self) -> None:
        """Create an empty status file (and its directory) if none exists."""
        if self.path.exists():
            return
        with self.transaction():
            pass

    def remove_dead(self, pids_by_session: Mapping[str, int]) -> list[str]:
        """Remove sessions whose owning process is gone.

        Each removal is re-checked under the lock: a record that has since
        been replaced by a session with a different pid is kept.

        Args:
            pids_by_session: session id -> pid observed as dead

        Returns:
            Session ids actually removed.
        """
        def _remove(document: StatusDocument) -> list[str]:
            removed = []
            for session_id, pid in pids_by_session.items():
                record = document.instances.get(session_id)
                if record is not None and record.pid == pid:
                    del document.instances[session_id]
                    removed.append(session_id)
            return removed

        removed = self.with_lock(_remove)
        if removed:
            logger.info(f"Removed {len(removed)} session(s) with dead processes: {', '.join(removed)}")
        return removed

    def _write(self, content: str) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        fd, temp_path = tempfile.mkstemp(
            dir=str(self.path.parent),
            prefix=f".{self.path.name}.",
            suffix=".tmp",
        )
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as handle:
                handle.write(content)
                handle.write("\n")
                handle.flush()
                os.fsync(handle.fileno())
            os.replace(temp_path, self.path)
        except BaseException:
            try:
                os.unlink(temp_path)
            except OSError:
                pass
            raise
