"""Exception types for Session Semaphore."""

from pathlib import Path
from typing import Optional


class SemaphoreError(Exception):
    """Base class for all Session Semaphore errors."""


class LockError(SemaphoreError):
    """Raised on misuse of the status file lock (re-entry, foreign release)."""

    def __init__(self, message: str, lock_dir: Optional[Path] = None):
        super().__init__(message)
        self.lock_dir = lock_dir


class LockTimeoutError(LockError, TimeoutError):
    """Raised when the lock could not be acquired within a bounded wait."""

    def __init__(self, lock_dir: Path, timeout: float):
        super().__init__(
            f"Could not acquire lock {lock_dir} within {timeout}s; "
            "it may be held by another writer",
            lock_dir=lock_dir,
        )
        self.timeout = timeout
