"""Tests for the directory lock."""

import json
import os
import shutil
import socket
import time
from unittest.mock import patch

import pytest

from session_semaphore.errors import LockError, LockTimeoutError, SemaphoreError
from session_semaphore.lock import OWNER_FILE, DirectoryLock, read_owner


@pytest.fixture
def lock_dir(tmp_path):
    return tmp_path / "status.lock"


def plant_lock(lock_dir, pid, token="foreign", host=None):
    """Create a lock directory as if another writer held it."""
    lock_dir.mkdir()
    (lock_dir / OWNER_FILE).write_text(json.dumps({
        "pid": pid,
        "host": host or socket.gethostname(),
        "token": token,
        "acquired_at": time.time(),
    }))


class TestAcquireRelease:
    def test_acquire_creates_directory_with_owner(self, lock_dir):
        lock = DirectoryLock(lock_dir)
        lock.acquire()
        try:
            assert lock.held
            owner = read_owner(lock_dir)
            assert owner["pid"] == os.getpid()
            assert owner["host"] == socket.gethostname()
        finally:
            lock.release()

        assert not lock_dir.exists()
        assert not lock.held

    def test_context_manager_releases_on_error(self, lock_dir):
        lock = DirectoryLock(lock_dir)
        with pytest.raises(RuntimeError):
            with lock:
                raise RuntimeError("boom")
        assert not lock_dir.exists()

    def test_reentry_raises(self, lock_dir):
        lock = DirectoryLock(lock_dir)
        with lock:
            with pytest.raises(LockError):
                lock.acquire()
        assert not lock_dir.exists()

    def test_release_without_holding_raises(self, lock_dir):
        with pytest.raises(LockError):
            DirectoryLock(lock_dir).release()

    def test_creates_missing_parent(self, tmp_path):
        lock = DirectoryLock(tmp_path / "a" / "b" / "status.lock")
        with lock:
            assert (tmp_path / "a" / "b" / "status.lock").is_dir()


class TestContention:
    def test_timeout_when_held_by_live_owner(self, lock_dir):
        plant_lock(lock_dir, pid=os.getpid())
        lock = DirectoryLock(lock_dir, poll_interval=0.005, timeout=0.05)

        with pytest.raises(LockTimeoutError) as exc_info:
            lock.acquire()

        assert isinstance(exc_info.value, TimeoutError)
        assert isinstance(exc_info.value, SemaphoreError)
        assert exc_info.value.lock_dir == lock_dir
        assert lock_dir.exists()
        assert not lock.held

    def test_breaks_lock_of_dead_owner(self, lock_dir):
        plant_lock(lock_dir, pid=999999)
        lock = DirectoryLock(lock_dir, timeout=1.0)

        with patch("psutil.pid_exists", return_value=False):
            lock.acquire()
        try:
            assert read_owner(lock_dir)["token"] != "foreign"
        finally:
            lock.release()
        assert not any(p.name.startswith("status.lock.stale") for p in lock_dir.parent.iterdir())

    def test_breaks_lock_older_than_stale_after(self, lock_dir):
        lock_dir.mkdir()
        old = time.time() - 60
        os.utime(lock_dir, (old, old))
        lock = DirectoryLock(lock_dir, stale_after=10.0, timeout=1.0)

        with lock:
            assert lock.held

    def test_owner_on_other_host_is_not_judged_by_pid(self, lock_dir):
        plant_lock(lock_dir, pid=999999, host="elsewhere")
        lock = DirectoryLock(lock_dir, timeout=0.05)

        with patch("psutil.pid_exists", return_value=False):
            assert not lock.is_stale()

    def test_release_leaves_lock_taken_over_by_another_writer(self, lock_dir):
        lock = DirectoryLock(lock_dir)
        lock.acquire()
        owner = read_owner(lock_dir)
        owner["token"] = "someone-else"
        (lock_dir / OWNER_FILE).write_text(json.dumps(owner))

        lock.release()

        assert lock_dir.exists()
        assert not lock.held

    def test_release_leaves_recreated_lock_without_owner(self, lock_dir):
        lock = DirectoryLock(lock_dir)
        lock.acquire()
        shutil.rmtree(lock_dir)
        lock_dir.mkdir()

        lock.release()

        assert lock_dir.exists()


class TestStealRace:
    """The lock changes hands between the staleness check and the steal."""

    def test_live_holder_that_replaced_stale_lock_keeps_it(self, lock_dir, monkeypatch):
        plant_lock(lock_dir, pid=999999, token="dead")
        holder = DirectoryLock(lock_dir)
        breaker = DirectoryLock(lock_dir, poll_interval=0.005, timeout=0.05)
        judge = breaker._stale_snapshot

        def judge_then_swap():
            snapshot = judge()
            if snapshot is not None and not holder.held:
                shutil.rmtree(lock_dir)
                holder.acquire()
            return snapshot

        monkeypatch.setattr(breaker, "_stale_snapshot", judge_then_swap)
        with patch("psutil.pid_exists", side_effect=lambda pid: pid != 999999):
            with pytest.raises(LockTimeoutError):
                breaker.acquire()

        assert holder.held
        assert read_owner(lock_dir)["token"] == holder._token
        assert not any(p.name.startswith("status.lock.stale") for p in lock_dir.parent.iterdir())
        holder.release()
        assert not lock_dir.exists()

    def test_fresh_lock_without_owner_is_not_taken_for_old_one(self, lock_dir, monkeypatch):
        lock_dir.mkdir()
        old = time.time() - 60
        os.utime(lock_dir, (old, old))
        breaker = DirectoryLock(lock_dir, stale_after=10.0, poll_interval=0.005, timeout=0.05)
        judge = breaker._stale_snapshot
        swapped = []

        def judge_then_swap():
            snapshot = judge()
            if snapshot is not None and not swapped:
                lock_dir.rmdir()
                lock_dir.mkdir()
                swapped.append(True)
            return snapshot

        monkeypatch.setattr(breaker, "_stale_snapshot", judge_then_swap)
        with pytest.raises(LockTimeoutError):
            breaker.acquire()

        assert swapped
        assert lock_dir.is_dir()
        assert not any(p.name.startswith("status.lock.stale") for p in lock_dir.parent.iterdir())
