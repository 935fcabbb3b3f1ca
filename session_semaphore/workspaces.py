"""Workspace assignment for tracked sessions.

Resolution chain: session tty → terminal window → workspace → workspace
number. The tty → window step is the expensive one and is cached.
"""

import logging
from typing import Mapping

from .cache import TTLCache
from .models import SessionRecord
from .windows import WindowBackend

logger = logging.getLogger(__name__)


class WorkspaceResolver:
    """Maps sessions to the workspace number of their terminal window."""

    def __init__(self, windows: WindowBackend, cache_ttl: float = 1.0):
        """Initialize the resolver.

        Args:
            windows: Window-manager backend
            cache_ttl: Seconds the tty → window map is reused
        """
        self.windows = windows
        self._tty_cache: TTLCache = TTLCache(ttl=cache_ttl)

    async def resolve(self, records: Mapping[str, SessionRecord]) -> dict[str, int]:
        """Return session id -> workspace number for every resolvable session.

        Sessions without a tty, or whose window/workspace cannot be found,
        are left out.
        """
        ttys = {sid: record.tty for sid, record in records.items() if record.tty}
        if not ttys:
            return {}

        # A change in session count usually means a terminal window appeared or closed
        tty_windows = await self._tty_cache.get(self.windows.tty_window_map, key=len(records))
        if not tty_windows:
            return {}

        window_spaces = await self.windows.window_workspaces()
        space_indices = await self.windows.workspace_indices()
        if not window_spaces or not space_indices:
            return {}

        result: dict[str, int] = {}
        for session_id, tty in ttys.items():
            window_id = tty_windows.get(tty)
            if window_id is None:
                continue
            space_id = window_spaces.get(window_id)
            if space_id is None:
                continue
            index = space_indices.get(space_id)
            if index is not None:
                result[session_id] = index
        return result

    def invalidate(self) -> None:
        self._tty_cache.invalidate(reason="explicit")
