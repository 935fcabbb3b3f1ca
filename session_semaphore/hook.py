"""Hook entry point.

The assistant runs this command once per lifecycle event with a JSON
envelope on stdin:

    {"session_id": "...", "cwd": "...", "hook_event_name": "PreToolUse", "tool_name": "AskUserQuestion"}

The hook updates the shared status file under the lock and always exits 0;
the assistant must never treat a status-tracking failure as a hook error.

Usage:
    session-semaphore-hook < envelope.json
    SESSION_SEMAPHORE_DEBUG=1 session-semaphore-hook < envelope.json
"""

import logging
import os
import sys
import time
from typing import Optional

from .config import SemaphoreConfig
from .errors import SemaphoreError
from .models import EventContext, HookEvent, HookEventName
from .processes import ProcessInspector
from .state_machine import Transition, apply_event
from .store import StatusStore

logger = logging.getLogger(__name__)

DEBUG_FORMAT = "[%(asctime)s] %(message)s"


def setup_hook_logging(config: SemaphoreConfig) -> None:
    """Route package logs to the debug log, or nowhere.

    The hook shares the assistant's terminal, so nothing may reach stdout
    or stderr unless debugging was asked for.
    """
    package_logger = logging.getLogger("session_semaphore")
    for handler in list(package_logger.handlers):
        package_logger.removeHandler(handler)
        handler.close()
    package_logger.propagate = False

    if not config.debug:
        package_logger.addHandler(logging.NullHandler())
        return

    try:
        handler = logging.FileHandler(config.debug_log, mode="a", encoding="utf-8")
    except OSError:
        package_logger.addHandler(logging.NullHandler())
        return
    formatter = logging.Formatter(DEBUG_FORMAT, datefmt="%Y-%m-%dT%H:%M:%SZ")
    formatter.converter = time.gmtime
    handler.setFormatter(formatter)
    package_logger.addHandler(handler)
    package_logger.setLevel(logging.DEBUG)


def capture_context(
    event: HookEvent,
    processes: ProcessInspector,
    pid: Optional[int] = None,
) -> EventContext:
    """Collect process metadata for an event.

    Only SessionStart stores process metadata, so the (comparatively slow)
    process queries are skipped for every other event.

    Args:
        event: Event being handled.
        processes: Process inspector.
        pid: Owning assistant pid; defaults to this hook's parent process.
    """
    if event.kind != HookEventName.SESSION_START:
        return EventContext()

    owner = pid if pid is not None else os.getppid()
    return EventContext(
        pid=owner,
        terminal_pid=processes.terminal_app_of(owner),
        tty=processes.tty_of(owner),
    )


def handle_hook_input(
    raw: str,
    store: StatusStore,
    processes: Optional[ProcessInspector] = None,
    pid: Optional[int] = None,
) -> Optional[Transition]:
    """Decode one envelope and apply it to the status file.

    Returns:
        The transition applied, or None when the envelope was malformed,
        incomplete or named an unrecognized event.
    """
    event = HookEvent.parse(raw)
    if event is None:
        logger.debug("Ignoring malformed or incomplete hook input")
        return None

    logger.debug(
        f"EVENT={event.hook_event_name} TOOL_NAME={event.tool_name or ''} SESSION_ID={event.session_id}"
    )
    if event.kind == HookEventName.UNKNOWN:
        logger.debug(f"→ ignored (unrecognized event {event.hook_event_name!r})")
        return None

    context = capture_context(event, processes or ProcessInspector(), pid=pid)
    with store.transaction() as document:
        result = apply_event(document, event, context)

    if result.changed:
        status = result.record.status.value if result.record is not None else "-"
        logger.debug(f"→ {result.action.value} (status={status})")
        if result.superseded:
            logger.debug(f"→ superseded {', '.join(result.superseded)}")
    else:
        logger.debug("→ no change")
    return result


def run(stdin=None, config: Optional[SemaphoreConfig] = None) -> int:
    """Run the hook. Always returns 0."""
    config = config or SemaphoreConfig.from_env()
    setup_hook_logging(config)

    stream = stdin if stdin is not None else sys.stdin
    try:
        raw = stream.read()
    except (OSError, ValueError) as e:
        logger.debug(f"Cannot read hook input: {e}")
        return 0

    try:
        handle_hook_input(raw, StatusStore.from_config(config))
    except (SemaphoreError, OSError) as e:
        logger.debug(f"Status update failed: {e}")
    except Exception:
        logger.exception("Unexpected error handling hook event")
    return 0


def main() -> None:
    """Console script entry point."""
    sys.exit(run())


if __name__ == "__main__":
    main()
