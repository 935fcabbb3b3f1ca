"""Directory-based cross-process lock for the status file.

``mkdir`` is atomic on every local filesystem, so creating the lock
directory is the acquisition; removing it is the release. An ``owner.json``
file inside identifies the holder so a lock left behind by a killed
writer can be recognised and broken:

    - the lock directory is older than ``stale_after`` seconds, or
    - the owning pid lives on this host and no longer exists.

A stale lock is stolen by renaming it aside first, so two writers that
both judged it stale cannot both delete it.
"""

import json
import logging
import os
import shutil
import socket
import time
import uuid
from pathlib import Path
from typing import Optional

import psutil

from .errors import LockError, LockTimeoutError

logger = logging.getLogger(__name__)

OWNER_FILE = "owner.json"


class DirectoryLock:
    """Mutual exclusion between independent writer processes.

    Example:
        >>> lock = DirectoryLock(Path("~/.claude/session-semaphore-status.lock"))
        >>> with lock:
        ...     rewrite_status_file()
    """

    def __init__(
        self,
        lock_dir: Path,
        poll_interval: float = 0.01,
        stale_after: float = 10.0,
        timeout: Optional[float] = None,
    ):
        """Initialize the lock.

        Args:
            lock_dir: Directory whose existence means "locked".
            poll_interval: Seconds between acquisition attempts.
            stale_after: Seconds after which a held lock is considered abandoned.
            timeout: Maximum seconds to wait; None waits until acquired.
        """
        self.lock_dir = Path(lock_dir)
        self.poll_interval = poll_interval
        self.stale_after = stale_after
        self.timeout = timeout
        self._token: Optional[str] = None
        self._owner_written = False

    @property
    def held(self) -> bool:
        return self._token is not None

    def acquire(self) -> None:
        """Block until the lock is held by this object.

        Raises:
            LockError: If this object already holds the lock.
            LockTimeoutError: If ``timeout`` elapses first.
        """
        if self._token is not None:
            raise LockError(f"Lock re-entry detected on {self.lock_dir}", lock_dir=self.lock_dir)

        self.lock_dir.parent.mkdir(parents=True, exist_ok=True)
        token = uuid.uuid4().hex
        start = time.monotonic()

        while True:
            try:
                self.lock_dir.mkdir()
            except FileExistsError:
                self._break_if_stale()
            else:
                self._token = token
                self._write_owner(token)
                return

            if self.timeout is not None and time.monotonic() - start >= self.timeout:
                raise LockTimeoutError(self.lock_dir, self.timeout)
            time.sleep(self.poll_interval)

    def release(self) -> None:
        """Release the lock.

        Raises:
            LockError: If this object does not hold the lock.
        """
        if self._token is None:
            raise LockError(f"Release of unheld lock {self.lock_dir}", lock_dir=self.lock_dir)

        token, self._token = self._token, None
        owner_written, self._owner_written = self._owner_written, False
        owner = read_owner(self.lock_dir)
        if owner is None and owner_written:
            # Broken while held and re-created by a writer that has not written its owner yet
            logger.warning(f"Lock {self.lock_dir} lost its owner while held; not removing it")
            return
        if owner is not None and owner.get("token") != token:
            # Our lock was judged stale and broken; the directory belongs to someone else now
            logger.warning(f"Lock {self.lock_dir} was taken over while held; not removing it")
            return
        shutil.rmtree(self.lock_dir, ignore_errors=True)

    def __enter__(self) -> "DirectoryLock":
        self.acquire()
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.release()

    def _write_owner(self, token: str) -> None:
        info = {
            "pid": os.getpid(),
            "host": socket.gethostname(),
            "token": token,
            "acquired_at": time.time(),
        }
        try:
            (self.lock_dir / OWNER_FILE).write_text(json.dumps(info))
        except OSError as e:
            # The lock is still held; only stale detection by owner pid is lost
            logger.debug(f"Could not write lock owner info: {e}")
        else:
            self._owner_written = True

    def is_stale(self) -> bool:
        """True if the current lock directory looks abandoned."""
        return self._stale_snapshot() is not None

    def _stale_snapshot(self) -> Optional[dict]:
        """Owner info of the lock if it is stale ({} when judged by age alone), else None."""
        age = _lock_age(self.lock_dir)
        if age is None:
            return None

        owner = read_owner(self.lock_dir)
        if owner and owner.get("token"):
            pid = owner.get("pid")
            if owner.get("host") == socket.gethostname() and isinstance(pid, int):
                if not psutil.pid_exists(pid):
                    logger.debug(f"Lock {self.lock_dir} owner {pid} is gone")
                    return owner
        if age > self.stale_after:
            logger.debug(f"Lock {self.lock_dir} is {age:.1f}s old")
            return owner if owner and owner.get("token") else {}
        # Owner file not written yet (or unreadable); rely on age alone
        return None

    def _break_if_stale(self) -> None:
        snapshot = self._stale_snapshot()
        if snapshot is None:
            return

        aside = self.lock_dir.with_name(f"{self.lock_dir.name}.stale-{uuid.uuid4().hex[:8]}")
        try:
            os.rename(self.lock_dir, aside)
        except FileNotFoundError:
            return  # Someone else broke or released it first
        except OSError as e:
            logger.debug(f"Could not move stale lock aside: {e}")
            return

        moved = read_owner(aside)
        if snapshot.get("token"):
            same_lock = moved is not None and moved.get("token") == snapshot["token"]
        else:
            age = _lock_age(aside)
            same_lock = not (moved and moved.get("token")) and age is not None and age > self.stale_after

        if not same_lock:
            # The lock was replaced between the check and the rename; give it back
            try:
                os.rename(aside, self.lock_dir)
            except OSError:
                logger.warning(f"Could not restore lock {self.lock_dir} moved aside to {aside}")
            return

        logger.warning(
            f"Removed stale lock {self.lock_dir} (owner pid={snapshot.get('pid')})"
        )
        shutil.rmtree(aside, ignore_errors=True)


def _lock_age(lock_dir: Path) -> Optional[float]:
    try:
        return time.time() - lock_dir.stat().st_mtime
    except FileNotFoundError:
        return None


def read_owner(lock_dir: Path) -> Optional[dict]:
    """Read the owner info of a lock directory, None if missing or unreadable."""
    try:
        data = json.loads((Path(lock_dir) / OWNER_FILE).read_text())
    except (OSError, ValueError):
        return None
    return data if isinstance(data, dict) else None
