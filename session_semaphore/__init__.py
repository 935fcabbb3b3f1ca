"""Session Semaphore.

Tracks the live status of concurrently running coding-assistant sessions
(Claude Code instances) in a shared status file and exposes an ordered,
focus- and workspace-aware view of them for status bars and panels.

Modules:
    - models: Pydantic data models (SessionRecord, StatusDocument, HookEvent, SessionList)
    - lock: Directory-based cross-process lock with stale lock recovery
    - store: Status file persistence under the lock
    - state_machine: Per-session lifecycle transitions
    - hook: Hook entry point invoked once per lifecycle event
    - processes: Process liveness and ancestry helpers (psutil)
    - windows: Window-manager introspection (Sway/i3 via i3ipc)
    - focus: Focused session detection
    - workspaces: Workspace assignment with a short-lived window cache
    - watcher: Status file change subscription (watchdog + polling)
    - monitor: Long-running status monitor
    - output: NDJSON / JSON file output for panel consumption
"""

import logging

__version__ = "0.3.0"

__all__ = [
    "__version__",
    "configure_logging",
    "get_logger",
]


def configure_logging(
    level: str = "INFO",
    format_string: str | None = None,
) -> logging.Logger:
    """Configure package-level logging to stderr.

    Args:
        level: Log level name (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        format_string: Custom format string. Defaults to timestamp,
            level, logger name and message.

    Returns:
        Configured logger instance for the session_semaphore package.
    """
    if format_string is None:
        format_string = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"

    logger = logging.getLogger("session_semaphore")
    logger.setLevel(getattr(logging, level.upper(), logging.INFO))

    # Remove existing handlers to avoid duplicates
    logger.handlers.clear()

    handler = logging.StreamHandler()
    handler.setFormatter(logging.Formatter(format_string, datefmt="%Y-%m-%d %H:%M:%S"))
    logger.addHandler(handler)

    return logger


def get_logger(name: str | None = None) -> logging.Logger:
    """Get a logger instance for the session_semaphore package.

    Args:
        name: Optional submodule name. If provided, returns
            logger named 'session_semaphore.{name}'.

    Returns:
        Logger instance.
    """
    if name:
        return logging.getLogger(f"session_semaphore.{name}")
    return logging.getLogger("session_semaphore")
