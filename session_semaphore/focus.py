"""Focused session detection.

A session is focused when its assistant process runs inside the frontmost
application. When several sessions share that application (tabs or
windows of one terminal), the tie is broken by the terminal's active tty
and then, as a heuristic, by the frontmost window's title.
"""

import asyncio
import logging
from typing import Mapping, Optional

from .models import SessionRecord
from .processes import DEFAULT_MAX_DEPTH, ProcessInspector
from .windows import WindowBackend

logger = logging.getLogger(__name__)


def find_candidates(
    records: Mapping[str, SessionRecord],
    app_pid: int,
    processes: ProcessInspector,
    max_depth: int = DEFAULT_MAX_DEPTH,
) -> list[str]:
    """Sessions running inside app_pid, most recently updated first."""
    candidates = []
    for session_id, record in records.items():
        if record.pid is None:
            continue
        if record.terminal_pid == app_pid or processes.is_descendant(record.pid, app_pid, max_depth):
            candidates.append(session_id)
    candidates.sort(key=lambda sid: records[sid].last_update, reverse=True)
    return candidates


def match_by_title(titles: list[str], records: Mapping[str, SessionRecord]) -> Optional[str]:
    """Match the frontmost titled window against session project paths.

    Terminals usually show the working directory in the title. Only the
    frontmost window with a title is considered; windows behind it do not
    say anything about focus.
    """
    for title in titles:
        if not title:
            continue
        for session_id, record in records.items():
            name = record.project_name
            path = record.project
            if (name and name in title) or (path and (path in title or title in path)):
                return session_id
        break
    return None


async def detect_focused_session(
    records: Mapping[str, SessionRecord],
    windows: WindowBackend,
    processes: ProcessInspector,
    max_depth: int = DEFAULT_MAX_DEPTH,
) -> Optional[str]:
    """Return the id of the focused session, or None.

    Args:
        records: Tracked sessions.
        windows: Window-manager backend.
        processes: Process inspector for ancestry checks.
        max_depth: Parent chain walk bound.
    """
    if not records:
        return None

    app_pid = await windows.frontmost_application()
    if app_pid is None:
        return None

    candidates = await asyncio.to_thread(find_candidates, records, app_pid, processes, max_depth)
    if not candidates:
        return None
    if len(candidates) == 1:
        return candidates[0]

    tty = await windows.focused_tty(app_pid)
    if tty:
        for session_id in candidates:
            if records[session_id].tty == tty:
                return session_id

    titles = await windows.window_titles(app_pid)
    matched = match_by_title(titles, {sid: records[sid] for sid in candidates})
    if matched is None:
        logger.debug(f"{len(candidates)} sessions in app {app_pid}, none matched the focused window")
    return matched
