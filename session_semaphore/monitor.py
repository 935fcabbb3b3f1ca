"""Long-running status monitor.

Keeps an in-memory mirror of the status file and derives, per session,
whether it has focus and which workspace its terminal is on. Three
cooperative activities run on one event loop:

- reload: triggered by the file watcher (native notifications or polling)
- refresh: focus and workspace lookups every ``refresh_interval``
- reconcile: dead-process cleanup every ``reconcile_interval``

Blocking work (file reads, lock acquisition, process inspection) runs in
worker threads so watcher ticks are always delivered promptly.

Every change of the derived view is published as a SessionList to the
OutputWriter and to an optional on_change callback.
"""

import asyncio
import inspect
import logging
from pathlib import Path
from typing import Any, Callable, Optional

from .config import SemaphoreConfig
from .errors import LockTimeoutError, SemaphoreError
from .focus import detect_focused_session
from .models import SessionList, SessionRecord, SessionView
from .output import OutputWriter
from .processes import ProcessInspector
from .store import StatusStore
from .watcher import StatusFileWatcher
from .windows import NullWindowBackend, WindowBackend
from .workspaces import WorkspaceResolver

logger = logging.getLogger(__name__)

ChangeCallback = Callable[[SessionList], Any]


def sort_sessions(views: list[SessionView]) -> list[SessionView]:
    """Order by workspace number (unresolved last), then most recent first."""
    by_recency = sorted(views, key=lambda v: (v.last_update, v.session_id), reverse=True)
    return sorted(by_recency, key=lambda v: (v.workspace is None, v.workspace or 0))


class StatusMonitor:
    """Observes the status file and publishes the derived session view.

    Example:
        >>> monitor = StatusMonitor(SemaphoreConfig.from_env(), output=OutputWriter())
        >>> await monitor.start()
        >>> ...
        >>> await monitor.stop()
    """

    def __init__(
        self,
        config: SemaphoreConfig,
        store: Optional[StatusStore] = None,
        processes: Optional[ProcessInspector] = None,
        windows: Optional[WindowBackend] = None,
        output: Optional[OutputWriter] = None,
        on_change: Optional[ChangeCallback] = None,
        home: Optional[Path] = None,
    ) -> None:
        """Initialize the monitor.

        Args:
            config: Runtime configuration
            store: Status store (built from config when None)
            processes: Process inspector for liveness and ancestry
            windows: Window-manager backend (null backend when None)
            output: Writer receiving every changed view
            on_change: Called with every changed view; may be a coroutine function
            home: Home directory for display paths (defaults to the user's)
        """
        self.config = config
        self.store = store or StatusStore.from_config(config)
        self.processes = processes or ProcessInspector()
        self.windows = windows or NullWindowBackend()
        self.output = output
        self.on_change = on_change
        self.home = home

        self.workspace_resolver = WorkspaceResolver(self.windows, cache_ttl=config.window_cache_ttl)
        self.watcher = StatusFileWatcher(
            self.store.path,
            on_change=self._request_reload,
            poll_interval=config.refresh_interval,
            rewatch_delay=config.rewatch_delay,
        )

        self._records: dict[str, SessionRecord] = {}
        self.focused_session_id: Optional[str] = None
        self.workspaces: dict[str, int] = {}
        self._view: SessionList = SessionList.build([], None)
        self._published_key: Optional[str] = None

        self._reload_requested = asyncio.Event()
        self._running = False
        self._tasks: list[asyncio.Task] = []

    # -------------------------------------------------------------------------
    # Lifecycle
    # -------------------------------------------------------------------------

    async def start(self) -> None:
        if self._running:
            return
        self._running = True

        try:
            await asyncio.to_thread(self.store.ensure_exists)
        except (SemaphoreError, OSError) as e:
            logger.warning(f"Cannot initialize status file {self.store.path}: {e}")

        await self.reload()
        await self.refresh()
        await self.publish()

        await self.watcher.start()
        self._tasks = [
            asyncio.create_task(self._reload_loop()),
            asyncio.create_task(self._refresh_loop()),
            asyncio.create_task(self._reconcile_loop()),
        ]
        logger.info(f"Status monitor started ({len(self._records)} sessions)")

    async def stop(self) -> None:
        if not self._running:
            return
        self._running = False

        for task in self._tasks:
            task.cancel()
        for task in self._tasks:
            try:
                await task
            except asyncio.CancelledError:
                pass
        self._tasks = []

        await self.watcher.stop()
        await self.windows.close()
        logger.info("Status monitor stopped")

    async def snapshot(self) -> SessionList:
        """One-shot view: read the store and resolve focus/workspaces once."""
        await self.reload()
        await self.refresh()
        self._view = self.build_view()
        return self._view

    # -------------------------------------------------------------------------
    # View
    # -------------------------------------------------------------------------

    @property
    def records(self) -> dict[str, SessionRecord]:
        return dict(self._records)

    @property
    def sessions(self) -> list[SessionView]:
        """Ordered session descriptors of the last published view."""
        return list(self._view.sessions)

    @property
    def view(self) -> SessionList:
        return self._view

    def build_view(self) -> SessionList:
        views = [
            SessionView.from_record(
                session_id,
                record,
                focused=session_id == self.focused_session_id,
                workspace=self.workspaces.get(session_id),
                home=self.home,
            )
            for session_id, record in self._records.items()
        ]
        return SessionList.build(sort_sessions(views), self.focused_session_id)

    async def publish(self) -> bool:
        """Rebuild the view and emit it if it differs from the last one.

        Returns:
            True if a new view was emitted.
        """
        view = self.build_view()
        key = view.model_dump_json(exclude={"timestamp"})
        self._view = view
        if key == self._published_key:
            return False
        self._published_key = key

        if self.output is not None:
            await self.output.write_session_list(view)
        if self.on_change is not None:
            try:
                result = self.on_change(view)
                if inspect.isawaitable(result):
                    await result
            except Exception:
                logger.exception("on_change callback failed")
        return True

    # -------------------------------------------------------------------------
    # Operations
    # -------------------------------------------------------------------------

    async def reload(self) -> None:
        """Replace the in-memory mirror with the current file contents.

        An unreadable or corrupt file reads as no sessions.
        """
        document = await asyncio.to_thread(self.store.read)
        self._records = dict(document.instances)
        if self.focused_session_id not in self._records:
            self.focused_session_id = None
        self.workspaces = {sid: ws for sid, ws in self.workspaces.items() if sid in self._records}

    async def refresh(self) -> None:
        """Recompute focus and workspace assignment for the current records."""
        records = dict(self._records)

        try:
            focused = await detect_focused_session(
                records, self.windows, self.processes, self.config.max_ancestry_depth
            )
        except Exception as e:
            logger.debug(f"Focus detection failed: {type(e).__name__}: {e}")
            focused = None

        try:
            workspaces = await self.workspace_resolver.resolve(records)
        except Exception as e:
            logger.debug(f"Workspace resolution failed: {type(e).__name__}: {e}")
            workspaces = {}

        # Records may have been reloaded while the lookups were in flight
        self.focused_session_id = focused if focused in self._records else None
        self.workspaces = {sid: ws for sid, ws in workspaces.items() if sid in self._records}

    def find_dead(self) -> dict[str, int]:
        """session id -> pid for every record whose owning process is gone."""
        return {
            session_id: record.pid
            for session_id, record in self._records.items()
            if record.pid is not None and not self.processes.is_alive(record.pid)
        }

    async def reconcile(self) -> list[str]:
        """Remove records whose owning process died without a SessionEnd.

        Returns:
            Session ids removed from the status file.
        """
        dead = await asyncio.to_thread(self.find_dead)
        if not dead:
            return []

        try:
            removed = await asyncio.to_thread(self.store.remove_dead, dead)
        except LockTimeoutError as e:
            logger.warning(f"Reconciliation skipped, retrying next interval: {e}")
            return []

        await self.reload()
        await self.publish()
        return removed

    # -------------------------------------------------------------------------
    # Loops
    # -------------------------------------------------------------------------

    def _request_reload(self) -> None:
        self._reload_requested.set()

    async def _reload_loop(self) -> None:
        while self._running:
            await self._reload_requested.wait()
            self._reload_requested.clear()
            try:
                await self.reload()
                await self.publish()
            except Exception as e:
                logger.error(f"Reload failed: {e}")

    async def _refresh_loop(self) -> None:
        while self._running:
            await asyncio.sleep(self.config.refresh_interval)
            try:
                await self.refresh()
                await self.publish()
            except Exception as e:
                logger.error(f"Refresh failed: {e}")

    async def _reconcile_loop(self) -> None:
        while self._running:
            await asyncio.sleep(self.config.reconcile_interval)
            try:
                await self.reconcile()
            except (SemaphoreError, OSError) as e:
                logger.error(f"Reconciliation failed: {e}")
