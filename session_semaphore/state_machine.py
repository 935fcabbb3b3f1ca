"""Session state machine.

Each hook invocation delivers one lifecycle event. ``transition`` maps
(current record, event, context) to an action and the resulting record;
``apply_event`` applies that result to the status document.

State Machine:
    SessionStart                   → create record, IDLE
    UserPromptSubmit               → WORKING, question cleared
    PreToolUse(interactive tool)   → WAITING, question pending
    PostToolUse(interactive tool)  → WORKING, question cleared
    PostToolUse(other tool)        → WORKING if IDLE/WAITING (resumed session)
    Notification                   → WAITING, question pending (permission prompt)
    Stop                           → IDLE, question cleared
    SessionEnd                     → record removed

Events for sessions that are not tracked have no effect, except
SessionStart which creates the record.
"""

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Optional

from .models import (
    EventContext,
    HookEvent,
    HookEventName,
    InteractiveTool,
    SessionRecord,
    SessionStatus,
    StatusDocument,
)

logger = logging.getLogger(__name__)


class Action(str, Enum):
    """What an event does to the status document."""

    ADD = "add"
    SET_PENDING = "set_pending"
    CLEAR_PENDING = "clear_pending"
    ENSURE_WORKING = "ensure_working"
    STOP = "stop"
    REMOVE = "remove"
    NONE = "none"


@dataclass
class Transition:
    """Outcome of applying one event."""

    action: Action
    session_id: str
    record: Optional[SessionRecord] = None
    superseded: list[str] = field(default_factory=list)

    @property
    def changed(self) -> bool:
        return self.action != Action.NONE


def plan_action(event: HookEvent) -> Action:
    """Pick the action for an event, independent of the current record."""
    kind = event.kind
    if kind == HookEventName.SESSION_START:
        return Action.ADD
    if kind == HookEventName.USER_PROMPT_SUBMIT:
        return Action.CLEAR_PENDING
    if kind == HookEventName.PRE_TOOL_USE:
        # Shown as waiting while the question is on screen, before the tool returns
        if InteractiveTool.matches(event.tool_name):
            return Action.SET_PENDING
        return Action.NONE
    if kind == HookEventName.POST_TOOL_USE:
        if InteractiveTool.matches(event.tool_name):
            return Action.CLEAR_PENDING
        return Action.ENSURE_WORKING
    if kind == HookEventName.NOTIFICATION:
        return Action.SET_PENDING
    if kind == HookEventName.STOP:
        return Action.STOP
    if kind == HookEventName.SESSION_END:
        return Action.REMOVE
    return Action.NONE


def transition(
    record: Optional[SessionRecord],
    event: HookEvent,
    context: EventContext,
) -> tuple[Action, Optional[SessionRecord]]:
    """Compute the next record for a session.

    Args:
        record: Current record, None if the session is not tracked.
        event: Incoming lifecycle event.
        context: Process metadata and timestamp captured with the event.

    Returns:
        (action taken, resulting record). The record is None when the
        session is removed or stays untracked. Action.NONE means the
        document is left untouched.
    """
    action = plan_action(event)

    if action == Action.ADD:
        return action, SessionRecord(
            status=SessionStatus.IDLE,
            project=event.cwd,
            last_update=context.timestamp,
            pid=context.pid,
            terminal_pid=context.terminal_pid,
            tty=context.tty,
            pending_question=False,
        )

    if record is None or action == Action.NONE:
        return Action.NONE, record

    if action == Action.REMOVE:
        return action, None

    stamp = max(context.timestamp, record.last_update)

    if action == Action.SET_PENDING:
        return action, record.model_copy(
            update={"status": SessionStatus.WAITING, "pending_question": True, "last_update": stamp}
        )

    if action == Action.CLEAR_PENDING:
        update = {"status": SessionStatus.WORKING, "pending_question": False, "last_update": stamp}
        if event.kind == HookEventName.USER_PROMPT_SUBMIT and event.cwd:
            update["project"] = event.cwd
        return action, record.model_copy(update=update)

    if action == Action.ENSURE_WORKING:
        # Only a session that looked idle or blocked is moved; one already working is left alone
        if record.status == SessionStatus.WORKING:
            return Action.NONE, record
        return action, record.model_copy(
            update={"status": SessionStatus.WORKING, "pending_question": False, "last_update": stamp}
        )

    if action == Action.STOP:
        return action, record.model_copy(
            update={"status": SessionStatus.IDLE, "pending_question": False, "last_update": stamp}
        )

    return Action.NONE, record


def apply_event(document: StatusDocument, event: HookEvent, context: EventContext) -> Transition:
    """Apply one event to the status document in place.

    A SessionStart also drops every other record owned by the same pid:
    those belong to earlier sessions of a process that was killed before
    it could report SessionEnd.
    """
    session_id = event.session_id
    current = document.instances.get(session_id)
    action, record = transition(current, event, context)

    if action == Action.NONE:
        return Transition(Action.NONE, session_id, current)

    if action == Action.REMOVE:
        document.instances.pop(session_id, None)
        return Transition(action, session_id, None)

    superseded: list[str] = []
    if action == Action.ADD and context.pid is not None:
        superseded = [sid for sid in document.sessions_with_pid(context.pid) if sid != session_id]
        for sid in superseded:
            del document.instances[sid]
        if superseded:
            logger.debug(f"Session {session_id} supersedes {superseded} (pid {context.pid})")

    document.instances[session_id] = record
    return Transition(action, session_id, record, superseded)
