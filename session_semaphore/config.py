"""Configuration for Session Semaphore.

All tunables live in one pydantic model. Defaults can be overridden from
the environment (``SemaphoreConfig.from_env``) and then from command-line
flags, the same layering the monitor CLI uses.

Environment Variables:
    SESSION_SEMAPHORE_STATUS_FILE         Status file path
    SESSION_SEMAPHORE_LOCK_DIR            Lock directory path
    SESSION_SEMAPHORE_DEBUG               Enable hook debug log when non-empty
    SESSION_SEMAPHORE_DEBUG_LOG           Hook debug log path
    SESSION_SEMAPHORE_LOCK_TIMEOUT        Seconds a writer waits for the lock
    SESSION_SEMAPHORE_REFRESH_INTERVAL    Focus/workspace refresh cadence
    SESSION_SEMAPHORE_RECONCILE_INTERVAL  Dead process cleanup cadence
"""

import logging
import os
from pathlib import Path
from typing import Mapping, Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator

logger = logging.getLogger(__name__)

ENV_PREFIX = "SESSION_SEMAPHORE_"

DEFAULT_DEBUG_LOG = Path("/tmp/session-semaphore.log")


def default_status_file() -> Path:
    """Default status file under the Claude configuration directory."""
    return Path.home() / ".claude" / "session-semaphore-status.json"


def default_output_file() -> Path:
    """JSON snapshot written by the monitor for polling consumers."""
    runtime_dir = os.environ.get("XDG_RUNTIME_DIR", "/tmp")
    return Path(runtime_dir) / "session-semaphore.json"


class SemaphoreConfig(BaseModel):
    """Runtime configuration shared by the hook and the monitor."""

    model_config = ConfigDict(validate_assignment=True, extra="forbid")

    status_file: Path = Field(
        default_factory=default_status_file,
        description="Shared status document",
    )
    lock_dir: Optional[Path] = Field(
        default=None,
        description="Lock directory (defaults to status file with .lock suffix)",
    )
    debug: bool = Field(default=False, description="Append hook diagnostics to debug_log")
    debug_log: Path = Field(default=DEFAULT_DEBUG_LOG, description="Hook diagnostic log")

    lock_poll_interval: float = Field(default=0.01, gt=0, description="Seconds between lock attempts")
    lock_stale_after: float = Field(default=10.0, gt=0, description="Age after which a lock is stale")
    lock_timeout: Optional[float] = Field(
        default=None, gt=0, description="Bounded lock wait (None waits indefinitely)"
    )

    refresh_interval: float = Field(default=0.25, gt=0, description="Focus/workspace refresh cadence")
    reconcile_interval: float = Field(default=5.0, gt=0, description="Dead process cleanup cadence")
    window_cache_ttl: float = Field(default=1.0, ge=0, description="tty -> window map cache lifetime")
    rewatch_delay: float = Field(default=0.5, ge=0, description="Delay before re-watching a replaced file")
    max_ancestry_depth: int = Field(default=10, gt=0, description="Parent chain walk bound")

    @model_validator(mode="after")
    def _default_lock_dir(self) -> "SemaphoreConfig":
        if self.lock_dir is None:
            # Bypass validate_assignment to avoid re-running this validator
            object.__setattr__(self, "lock_dir", self.status_file.with_suffix(".lock"))
        return self

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None, **overrides) -> "SemaphoreConfig":
        """Build a configuration from SESSION_SEMAPHORE_* variables.

        Args:
            environ: Mapping to read from (defaults to os.environ)
            **overrides: Explicit values that win over the environment

        Returns:
            Validated SemaphoreConfig
        """
        env = os.environ if environ is None else environ
        values: dict = {}

        for key, field_name in (
            ("STATUS_FILE", "status_file"),
            ("LOCK_DIR", "lock_dir"),
            ("DEBUG_LOG", "debug_log"),
        ):
            raw = env.get(ENV_PREFIX + key)
            if raw:
                values[field_name] = Path(raw).expanduser()

        if env.get(ENV_PREFIX + "DEBUG"):
            values["debug"] = True

        for key, field_name in (
            ("LOCK_TIMEOUT", "lock_timeout"),
            ("REFRESH_INTERVAL", "refresh_interval"),
            ("RECONCILE_INTERVAL", "reconcile_interval"),
        ):
            raw = env.get(ENV_PREFIX + key)
            if not raw:
                continue
            try:
                number = float(raw)
            except ValueError:
                logger.warning(f"Ignoring invalid {ENV_PREFIX}{key}={raw!r}")
                continue
            if number <= 0:
                logger.warning(f"Ignoring non-positive {ENV_PREFIX}{key}={raw!r}")
                continue
            values[field_name] = number

        values.update({k: v for k, v in overrides.items() if v is not None})
        return cls(**values)
