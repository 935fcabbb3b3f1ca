"""Window-manager introspection.

The monitor asks a small set of questions about windows: which
application is in front, which terminal tty is active inside it, what the
window titles are, which window owns a tty and which workspace a window is
on. ``WindowBackend`` is that interface; ``SwayWindowBackend`` answers it
over Sway/i3 IPC and ``NullWindowBackend`` answers "unknown" everywhere.

Every answer may be None / empty: callers treat that as "not resolved".
"""

from __future__ import annotations

import asyncio
import logging
import os
from abc import ABC, abstractmethod
from collections import defaultdict
from glob import glob
from typing import TYPE_CHECKING, Optional

from i3ipc.aio import Connection

from .cache import TTLCache
from .processes import ProcessInspector

if TYPE_CHECKING:
    from i3ipc.aio import Con

logger = logging.getLogger(__name__)


class WindowBackend(ABC):
    """Capability interface for window/workspace queries."""

    @abstractmethod
    async def frontmost_application(self) -> Optional[int]:
        """PID of the application owning the focused window."""

    @abstractmethod
    async def focused_tty(self, app_pid: int) -> Optional[str]:
        """TTY of the active terminal session inside app_pid, if determinable."""

    @abstractmethod
    async def window_titles(self, app_pid: int) -> list[str]:
        """Titles of app_pid's windows, frontmost first."""

    @abstractmethod
    async def tty_window_map(self) -> Optional[dict[str, int]]:
        """tty device path -> window id for every attributable terminal window."""

    @abstractmethod
    async def window_workspaces(self) -> Optional[dict[int, int]]:
        """window id -> workspace id."""

    @abstractmethod
    async def workspace_indices(self) -> Optional[dict[int, int]]:
        """workspace id -> user-visible workspace number."""

    async def close(self) -> None:
        """Release any connection held by the backend."""


class NullWindowBackend(WindowBackend):
    """Backend for sessions without a supported window manager."""

    async def frontmost_application(self) -> Optional[int]:
        return None

    async def focused_tty(self, app_pid: int) -> Optional[str]:
        return None

    async def window_titles(self, app_pid: int) -> list[str]:
        return []

    async def tty_window_map(self) -> Optional[dict[str, int]]:
        return None

    async def window_workspaces(self) -> Optional[dict[int, int]]:
        return None

    async def workspace_indices(self) -> Optional[dict[int, int]]:
        return None


class SwayWindowBackend(WindowBackend):
    """Sway/i3 backend using i3ipc.aio.

    Sway windows carry the pid of the client that owns them, so the
    frontmost application is the focused window's pid. A terminal's tty can
    only be tied to a window when that terminal process owns exactly one
    window; single-process terminals hosting many windows stay unresolved.
    """

    def __init__(
        self,
        processes: ProcessInspector,
        socket_path: Optional[str] = None,
        connection: Optional[Connection] = None,
        tree_ttl: float = 0.05,
    ):
        """Initialize the backend.

        Args:
            processes: Process inspector for child tty lookups
            socket_path: Sway/i3 IPC socket (auto-detected when None)
            connection: Pre-connected i3ipc connection (tests, shared daemons)
            tree_ttl: Seconds a fetched tree is reused across queries
        """
        self.processes = processes
        self.socket_path = socket_path
        self._conn = connection
        self._tree_cache: TTLCache[Con] = TTLCache(ttl=tree_ttl)

    async def _connection(self) -> Connection:
        if self._conn is None:
            self._conn = await Connection(socket_path=self.socket_path, auto_reconnect=True).connect()
            logger.info("Connected to Sway IPC")
        return self._conn

    async def _fetch_tree(self) -> Con:
        conn = await self._connection()
        return await conn.get_tree()

    async def _tree(self) -> Optional[Con]:
        try:
            return await self._tree_cache.get(self._fetch_tree)
        except Exception as e:
            logger.debug(f"Sway IPC error: {type(e).__name__}: {e}")
            # The connection reconnects by itself; only the cached tree is dropped
            self._tree_cache.invalidate(reason="ipc error")
            return None

    @staticmethod
    def _windows(tree: Con) -> list[Con]:
        # Tiled and floating client windows: leaf containers with a pid
        return [con for con in tree.descendants() if con.pid and not con.nodes]

    async def frontmost_application(self) -> Optional[int]:
        tree = await self._tree()
        if tree is None:
            return None
        focused = tree.find_focused()
        if focused is None or not focused.pid:
            return None
        return focused.pid

    async def focused_tty(self, app_pid: int) -> Optional[str]:
        tree = await self._tree()
        if tree is None:
            return None
        focused = tree.find_focused()
        if focused is None or focused.pid != app_pid:
            return None

        app_windows = [w for w in self._windows(tree) if w.pid == app_pid]
        if len(app_windows) != 1:
            return None
        ttys = await asyncio.to_thread(self.processes.child_ttys, app_pid)
        return ttys[0] if len(ttys) == 1 else None

    async def window_titles(self, app_pid: int) -> list[str]:
        tree = await self._tree()
        if tree is None:
            return []
        app_windows = [w for w in self._windows(tree) if w.pid == app_pid]
        app_windows.sort(key=lambda w: 0 if w.focused else 1)
        return [w.name for w in app_windows if w.name]

    async def tty_window_map(self) -> Optional[dict[str, int]]:
        tree = await self._tree()
        if tree is None:
            return None
        return await asyncio.to_thread(self._build_tty_map, self._windows(tree))

    def _build_tty_map(self, windows: list[Con]) -> dict[str, int]:
        by_pid: dict[int, list[Con]] = defaultdict(list)
        for window in windows:
            by_pid[window.pid].append(window)

        mapping: dict[str, int] = {}
        for pid, owned in by_pid.items():
            if len(owned) != 1:
                continue
            for tty in self.processes.child_ttys(pid):
                mapping.setdefault(tty, owned[0].id)
        return mapping

    async def window_workspaces(self) -> Optional[dict[int, int]]:
        tree = await self._tree()
        if tree is None:
            return None
        result: dict[int, int] = {}
        for window in self._windows(tree):
            workspace = window.workspace()
            if workspace is not None:
                result[window.id] = workspace.id
        return result

    async def workspace_indices(self) -> Optional[dict[int, int]]:
        tree = await self._tree()
        if tree is None:
            return None
        # Named-only workspaces (and the scratchpad) report num -1
        return {
            ws.id: ws.num
            for ws in tree.workspaces()
            if isinstance(ws.num, int) and ws.num >= 0
        }

    async def close(self) -> None:
        if self._conn is not None:
            self._conn.main_quit()
            self._conn = None


def find_wm_socket() -> Optional[str]:
    """Find the Sway or i3 IPC socket path.

    Returns:
        Socket path if found, None otherwise
    """
    for var in ("SWAYSOCK", "I3SOCK"):
        path = os.environ.get(var)
        if path and os.path.exists(path):
            return path

    # Fallback: search for a Sway socket in the runtime dir
    runtime_dir = os.environ.get("XDG_RUNTIME_DIR", f"/run/user/{os.getuid()}")
    sockets = glob(os.path.join(runtime_dir, "sway-ipc.*.sock"))
    return sockets[0] if sockets else None


def create_window_backend(processes: ProcessInspector) -> WindowBackend:
    """Sway backend when a window-manager socket exists, null backend otherwise."""
    socket_path = find_wm_socket()
    if socket_path is None:
        logger.info("No Sway/i3 IPC socket found; focus and workspace detection disabled")
        return NullWindowBackend()
    logger.info(f"Using window manager socket {socket_path}")
    return SwayWindowBackend(processes, socket_path=socket_path)
