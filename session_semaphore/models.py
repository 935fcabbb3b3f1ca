"""Pydantic models for Session Semaphore.

This module defines the status file schema, the hook event envelope and
the view payload emitted by the monitor.

Status file format (camelCase keys, shared with the panel widgets):
    {"instances": {"<session_id>": {"status": "working", "project": "/src/app",
      "lastUpdate": "2026-01-01T12:00:00Z", "pid": 4242, "terminalPid": 4100,
      "tty": "/dev/pts/3", "pendingQuestion": false}}}
"""

import json
import time
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import Optional, Union

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    ValidationError,
    field_serializer,
    field_validator,
)

TIMESTAMP_FORMAT = "%Y-%m-%dT%H:%M:%SZ"


def utc_now() -> datetime:
    """Current UTC time at the one-second resolution the status file stores."""
    return datetime.now(timezone.utc).replace(microsecond=0)


def format_timestamp(value: datetime) -> str:
    """Format a datetime as an ISO-8601 UTC string (``...Z``)."""
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).strftime(TIMESTAMP_FORMAT)


# =============================================================================
# Status enums
# =============================================================================


class SessionStatus(str, Enum):
    """Primary, user-visible session state."""

    WORKING = "working"
    WAITING = "waiting"
    IDLE = "idle"


class HookEventName(str, Enum):
    """Lifecycle events delivered by the assistant's hook system.

    Anything not listed maps to UNKNOWN and is ignored by the state machine.
    """

    SESSION_START = "SessionStart"
    USER_PROMPT_SUBMIT = "UserPromptSubmit"
    PRE_TOOL_USE = "PreToolUse"
    POST_TOOL_USE = "PostToolUse"
    NOTIFICATION = "Notification"
    STOP = "Stop"
    SESSION_END = "SessionEnd"
    UNKNOWN = "unknown"

    @classmethod
    def _missing_(cls, value: object) -> "HookEventName":
        return cls.UNKNOWN


class InteractiveTool(str, Enum):
    """Tools that block on the user while they run."""

    ASK_USER_QUESTION = "AskUserQuestion"
    EXIT_PLAN_MODE = "ExitPlanMode"

    @classmethod
    def matches(cls, tool_name: Optional[str]) -> bool:
        """True if tool_name is one of the interactive tools."""
        return tool_name in {tool.value for tool in cls}


# =============================================================================
# Status file schema
# =============================================================================


class SessionRecord(BaseModel):
    """Current status of one tracked session.

    Invariant: pending_question implies status == WAITING.
    """

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    status: SessionStatus = Field(default=SessionStatus.IDLE, description="Current status")
    project: str = Field(default="", description="Working directory of the session")
    last_update: datetime = Field(
        default_factory=utc_now,
        alias="lastUpdate",
        description="UTC time of the last mutation",
    )
    pid: Optional[int] = Field(default=None, description="Owning assistant process")
    terminal_pid: Optional[int] = Field(
        default=None,
        alias="terminalPid",
        description="Terminal application process (focus matching)",
    )
    tty: Optional[str] = Field(default=None, description="Controlling terminal device")
    pending_question: bool = Field(
        default=False,
        alias="pendingQuestion",
        description="Interactive question or permission prompt outstanding",
    )

    @field_validator("pid", "terminal_pid", mode="before")
    @classmethod
    def _zero_pid_is_absent(cls, v):
        # Older shell hooks wrote 0 when the terminal could not be found
        if isinstance(v, int) and not isinstance(v, bool) and v <= 0:
            return None
        return v

    @field_validator("tty", mode="before")
    @classmethod
    def _empty_tty_is_absent(cls, v):
        if v == "" or v == "??":
            return None
        return v

    @field_validator("last_update")
    @classmethod
    def _assume_utc(cls, v: datetime) -> datetime:
        if v.tzinfo is None:
            return v.replace(tzinfo=timezone.utc)
        return v.astimezone(timezone.utc)

    @field_serializer("last_update")
    def _serialize_last_update(self, v: datetime) -> str:
        return format_timestamp(v)

    @property
    def project_name(self) -> str:
        """Last path component of the project directory."""
        return Path(self.project).name if self.project else ""


class StatusDocument(BaseModel):
    """The shared status file: session id -> SessionRecord."""

    model_config = ConfigDict(extra="ignore")

    instances: dict[str, SessionRecord] = Field(default_factory=dict)

    @classmethod
    def empty(cls) -> "StatusDocument":
        return cls(instances={})

    @classmethod
    def from_json(cls, raw: Union[str, bytes]) -> "StatusDocument":
        """Decode a status file body.

        Raises:
            ValueError: If the body is not a valid status document
                (pydantic's ValidationError is a ValueError).
        """
        return cls.model_validate_json(raw)

    def to_json(self) -> str:
        return self.model_dump_json(by_alias=True, exclude_none=True, indent=2)

    def sessions_with_pid(self, pid: int) -> list[str]:
        """Session ids whose record is owned by pid."""
        return [sid for sid, record in self.instances.items() if record.pid == pid]


# =============================================================================
# Hook envelope
# =============================================================================


class HookEvent(BaseModel):
    """Hook event envelope read from stdin.

    Only session_id and hook_event_name are mandatory; an envelope missing
    either is treated as absent.
    """

    model_config = ConfigDict(extra="ignore")

    session_id: str = Field(default="", description="Session identifier")
    cwd: str = Field(default="", description="Working directory")
    hook_event_name: str = Field(default="", description="Lifecycle event name")
    tool_name: Optional[str] = Field(default=None, description="Tool for Pre/PostToolUse")

    @field_validator("session_id", "cwd", "hook_event_name", mode="before")
    @classmethod
    def _null_is_empty(cls, v):
        # Same as jq's `.field // empty` in the shell hooks
        return v if isinstance(v, str) else ""

    @field_validator("tool_name", mode="before")
    @classmethod
    def _non_string_tool_is_absent(cls, v):
        return v if isinstance(v, str) else None

    @property
    def kind(self) -> HookEventName:
        return HookEventName(self.hook_event_name)

    @property
    def is_complete(self) -> bool:
        return bool(self.session_id) and bool(self.hook_event_name)

    @classmethod
    def parse(cls, raw: Union[str, bytes]) -> Optional["HookEvent"]:
        """Decode an envelope, returning None for malformed or incomplete input."""
        try:
            data = json.loads(raw)
        except (ValueError, UnicodeDecodeError):
            return None
        if not isinstance(data, dict):
            return None
        try:
            event = cls.model_validate(data)
        except ValidationError:
            return None
        return event if event.is_complete else None


class EventContext(BaseModel):
    """Metadata captured alongside an event by the hook process."""

    pid: Optional[int] = None
    terminal_pid: Optional[int] = None
    tty: Optional[str] = None
    timestamp: datetime = Field(default_factory=utc_now)


# =============================================================================
# Monitor view payload
# =============================================================================


class SessionView(BaseModel):
    """One session as presented to the panel."""

    session_id: str
    status: SessionStatus
    pending_question: bool = False
    project: str = ""
    project_name: str = ""
    display_path: str = ""
    last_update: datetime
    pid: Optional[int] = None
    terminal_pid: Optional[int] = None
    tty: Optional[str] = None
    focused: bool = False
    workspace: Optional[int] = Field(default=None, description="Workspace number, None if unresolved")

    @field_serializer("last_update")
    def _serialize_last_update(self, v: datetime) -> str:
        return format_timestamp(v)

    @classmethod
    def from_record(
        cls,
        session_id: str,
        record: SessionRecord,
        focused: bool = False,
        workspace: Optional[int] = None,
        home: Optional[Path] = None,
    ) -> "SessionView":
        return cls(
            session_id=session_id,
            status=record.status,
            pending_question=record.pending_question,
            project=record.project,
            project_name=record.project_name,
            display_path=display_path(record.project, home),
            last_update=record.last_update,
            pid=record.pid,
            terminal_pid=record.terminal_pid,
            tty=record.tty,
            focused=focused,
            workspace=workspace,
        )


class SessionList(BaseModel):
    """Full session view, emitted on every change."""

    type: str = Field(default="session_list", description="Event type for consumer routing")
    sessions: list[SessionView] = Field(default_factory=list)
    focused_session_id: Optional[str] = None
    has_working: bool = False
    has_waiting: bool = False
    timestamp: int = Field(default_factory=lambda: int(time.time()))

    @classmethod
    def build(cls, sessions: list[SessionView], focused_session_id: Optional[str]) -> "SessionList":
        return cls(
            sessions=sessions,
            focused_session_id=focused_session_id,
            has_working=any(s.status == SessionStatus.WORKING for s in sessions),
            has_waiting=any(s.status == SessionStatus.WAITING for s in sessions),
        )


def display_path(project: str, home: Optional[Path] = None) -> str:
    """Project path with the home directory shown as ``~``."""
    if not project:
        return ""
    home_str = str(home if home is not None else Path.home())
    if project == home_str:
        return "~"
    if project.startswith(home_str.rstrip("/") + "/"):
        return "~" + project[len(home_str.rstrip("/")):]
    return project
