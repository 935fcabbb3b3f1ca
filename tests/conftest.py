"""Pytest configuration and fixtures for Session Semaphore tests."""

import json
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Callable, Optional
from unittest.mock import AsyncMock, MagicMock

import pytest

from session_semaphore.config import SemaphoreConfig
from session_semaphore.models import EventContext, HookEvent, SessionRecord, SessionStatus
from session_semaphore.processes import ProcessInspector
from session_semaphore.store import StatusStore
from session_semaphore.windows import WindowBackend

BASE_TIME = datetime(2026, 1, 15, 12, 0, 0, tzinfo=timezone.utc)


@pytest.fixture
def status_file(tmp_path: Path) -> Path:
    """Status file path inside a per-test directory (not created)."""
    return tmp_path / "claude" / "session-semaphore-status.json"


@pytest.fixture
def config(status_file: Path) -> SemaphoreConfig:
    """Configuration with short intervals suitable for tests."""
    return SemaphoreConfig(
        status_file=status_file,
        lock_poll_interval=0.005,
        lock_timeout=5.0,
        refresh_interval=0.05,
        reconcile_interval=0.1,
        window_cache_ttl=1.0,
        rewatch_delay=0.05,
    )


@pytest.fixture
def store(config: SemaphoreConfig) -> StatusStore:
    return StatusStore.from_config(config)


@pytest.fixture
def write_status(status_file: Path) -> Callable[[dict], None]:
    """Write a raw status document (camelCase, as on disk)."""

    def _write(instances: dict) -> None:
        status_file.parent.mkdir(parents=True, exist_ok=True)
        status_file.write_text(json.dumps({"instances": instances}))

    return _write


@pytest.fixture
def make_event() -> Callable[..., HookEvent]:
    def _make(name: str, session_id: str = "s1", cwd: str = "/home/dev/project", tool: Optional[str] = None):
        return HookEvent(session_id=session_id, cwd=cwd, hook_event_name=name, tool_name=tool)

    return _make


@pytest.fixture
def make_context() -> Callable[..., EventContext]:
    """EventContext factory with deterministic, increasing timestamps."""
    counter = {"n": 0}

    def _make(pid: Optional[int] = None, terminal_pid: Optional[int] = None, tty: Optional[str] = None):
        counter["n"] += 1
        return EventContext(
            pid=pid,
            terminal_pid=terminal_pid,
            tty=tty,
            timestamp=BASE_TIME + timedelta(seconds=counter["n"]),
        )

    return _make


@pytest.fixture
def make_record() -> Callable[..., SessionRecord]:
    def _make(
        status: SessionStatus = SessionStatus.IDLE,
        project: str = "/home/dev/project",
        pid: Optional[int] = 1000,
        terminal_pid: Optional[int] = None,
        tty: Optional[str] = None,
        age: int = 0,
        pending: bool = False,
    ) -> SessionRecord:
        return SessionRecord(
            status=status,
            project=project,
            last_update=BASE_TIME - timedelta(seconds=age),
            pid=pid,
            terminal_pid=terminal_pid,
            tty=tty,
            pending_question=pending,
        )

    return _make


@pytest.fixture
def mock_processes() -> MagicMock:
    """ProcessInspector double: every pid alive, no ancestry, no ttys."""
    processes = MagicMock(spec=ProcessInspector)
    processes.is_alive.return_value = True
    processes.is_descendant.return_value = False
    processes.child_ttys.return_value = []
    processes.parent_of.return_value = None
    processes.tty_of.return_value = None
    processes.terminal_app_of.return_value = None
    return processes


@pytest.fixture
def mock_windows() -> AsyncMock:
    """Window backend double answering "unknown" everywhere."""
    windows = AsyncMock(spec=WindowBackend)
    windows.frontmost_application.return_value = None
    windows.focused_tty.return_value = None
    windows.window_titles.return_value = []
    windows.tty_window_map.return_value = None
    windows.window_workspaces.return_value = None
    windows.workspace_indices.return_value = None
    return windows


@pytest.fixture
def mock_xdg_runtime_dir(tmp_path: Path, monkeypatch) -> Path:
    """Point XDG_RUNTIME_DIR at a per-test directory."""
    runtime_dir = tmp_path / "runtime"
    runtime_dir.mkdir()
    monkeypatch.setenv("XDG_RUNTIME_DIR", str(runtime_dir))
    return runtime_dir
