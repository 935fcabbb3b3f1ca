"""Tests for the session state machine."""

import pytest

from session_semaphore.models import SessionStatus, StatusDocument
from session_semaphore.state_machine import Action, apply_event, plan_action, transition


def run_sequence(events, make_context, pid=4242):
    """Apply events to a fresh document, recording (status, pending) after each."""
    document = StatusDocument.empty()
    states = []
    for event in events:
        apply_event(document, event, make_context(pid=pid, terminal_pid=4000, tty="/dev/pts/3"))
        record = document.instances.get(event.session_id)
        states.append(None if record is None else (record.status, record.pending_question))
        for rec in document.instances.values():
            assert not rec.pending_question or rec.status == SessionStatus.WAITING
    return document, states


class TestPlanAction:
    @pytest.mark.parametrize(
        "name,tool,expected",
        [
            ("SessionStart", None, Action.ADD),
            ("UserPromptSubmit", None, Action.CLEAR_PENDING),
            ("PreToolUse", "AskUserQuestion", Action.SET_PENDING),
            ("PreToolUse", "ExitPlanMode", Action.SET_PENDING),
            ("PreToolUse", "Read", Action.NONE),
            ("PostToolUse", "AskUserQuestion", Action.CLEAR_PENDING),
            ("PostToolUse", "Bash", Action.ENSURE_WORKING),
            ("Notification", None, Action.SET_PENDING),
            ("Stop", None, Action.STOP),
            ("SessionEnd", None, Action.REMOVE),
            ("SubagentStop", None, Action.NONE),
        ],
    )
    def test_event_actions(self, make_event, name, tool, expected):
        assert plan_action(make_event(name, tool=tool)) == expected


class TestScenarios:
    def test_scenario_plain_tool_turn(self, make_event, make_context):
        """Start, prompt, read tool, stop, end."""
        events = [
            make_event("SessionStart"),
            make_event("UserPromptSubmit"),
            make_event("PreToolUse", tool="Read"),
            make_event("PostToolUse", tool="Read"),
            make_event("Stop"),
            make_event("SessionEnd"),
        ]
        document, states = run_sequence(events, make_context)

        assert [s[0] if s else None for s in states] == [
            SessionStatus.IDLE,
            SessionStatus.WORKING,
            SessionStatus.WORKING,
            SessionStatus.WORKING,
            SessionStatus.IDLE,
            None,
        ]
        assert document.instances == {}

    def test_scenario_permission_prompt(self, make_event, make_context):
        """A permission notification waits until the next tool completes."""
        events = [
            make_event("SessionStart"),
            make_event("UserPromptSubmit"),
            make_event("Notification"),
            make_event("PostToolUse", tool="Bash"),
            make_event("Stop"),
        ]
        _, states = run_sequence(events, make_context)

        assert [s[0] for s in states] == [
            SessionStatus.IDLE,
            SessionStatus.WORKING,
            SessionStatus.WAITING,
            SessionStatus.WORKING,
            SessionStatus.IDLE,
        ]

    def test_scenario_interactive_question(self, make_event, make_context):
        """pendingQuestion is set only while the question tool is on screen."""
        events = [
            make_event("SessionStart"),
            make_event("UserPromptSubmit"),
            make_event("PreToolUse", tool="AskUserQuestion"),
            make_event("PostToolUse", tool="AskUserQuestion"),
            make_event("Stop"),
        ]
        _, states = run_sequence(events, make_context)

        assert states == [
            (SessionStatus.IDLE, False),
            (SessionStatus.WORKING, False),
            (SessionStatus.WAITING, True),
            (SessionStatus.WORKING, False),
            (SessionStatus.IDLE, False),
        ]

    def test_start_then_end_leaves_no_record(self, make_event, make_context):
        document, _ = run_sequence([make_event("SessionStart"), make_event("SessionEnd")], make_context)
        assert "s1" not in document.instances


class TestTransitions:
    def test_start_stores_process_metadata(self, make_event, make_context):
        action, record = transition(
            None,
            make_event("SessionStart", cwd="/srv/api"),
            make_context(pid=77, terminal_pid=70, tty="/dev/pts/9"),
        )
        assert action == Action.ADD
        assert record.status == SessionStatus.IDLE
        assert record.pending_question is False
        assert (record.project, record.pid, record.terminal_pid, record.tty) == ("/srv/api", 77, 70, "/dev/pts/9")

    @pytest.mark.parametrize("name", ["UserPromptSubmit", "Notification", "Stop", "SessionEnd", "PostToolUse"])
    def test_untracked_session_is_unaffected(self, make_event, make_context, name):
        document = StatusDocument.empty()
        result = apply_event(document, make_event(name, tool="Bash"), make_context())
        assert result.action == Action.NONE
        assert not result.changed
        assert document.instances == {}

    def test_stop_is_idempotent(self, make_event, make_context, make_record):
        record = make_record(status=SessionStatus.WAITING, pending=True)
        _, once = transition(record, make_event("Stop"), make_context())
        _, twice = transition(once, make_event("Stop"), make_context())
        assert (once.status, once.pending_question) == (SessionStatus.IDLE, False)
        assert (twice.status, twice.pending_question) == (once.status, once.pending_question)

    def test_post_tool_leaves_working_session_untouched(self, make_event, make_context, make_record):
        record = make_record(status=SessionStatus.WORKING)
        action, after = transition(record, make_event("PostToolUse", tool="Edit"), make_context())
        assert action == Action.NONE
        assert after is record

    @pytest.mark.parametrize("status", [SessionStatus.IDLE, SessionStatus.WAITING])
    def test_post_tool_resumes_idle_or_waiting_session(self, make_event, make_context, make_record, status):
        record = make_record(status=status, pending=status == SessionStatus.WAITING)
        action, after = transition(record, make_event("PostToolUse", tool="Edit"), make_context())
        assert action == Action.ENSURE_WORKING
        assert after.status == SessionStatus.WORKING
        assert after.pending_question is False

    def test_pre_tool_other_tool_is_noop(self, make_event, make_context, make_record):
        record = make_record(status=SessionStatus.WORKING)
        action, _ = transition(record, make_event("PreToolUse", tool="Grep"), make_context())
        assert action == Action.NONE

    def test_prompt_updates_project(self, make_event, make_context, make_record):
        record = make_record(project="/old")
        _, after = transition(record, make_event("UserPromptSubmit", cwd="/new"), make_context())
        assert after.project == "/new"

    def test_last_update_never_decreases(self, make_event, make_context, make_record):
        record = make_record()
        future = record.model_copy(update={"last_update": record.last_update.replace(year=2030)})
        _, after = transition(future, make_event("Stop"), make_context())
        assert after.last_update == future.last_update

    def test_mutation_stamps_event_time(self, make_event, make_context, make_record):
        record = make_record(age=60)
        context = make_context()
        _, after = transition(record, make_event("UserPromptSubmit"), context)
        assert after.last_update == context.timestamp


class TestSupersede:
    def test_second_start_with_same_pid_replaces_first(self, make_event, make_context):
        document = StatusDocument.empty()
        apply_event(document, make_event("SessionStart", session_id="old"), make_context(pid=500))
        apply_event(document, make_event("SessionStart", session_id="other"), make_context(pid=501))
        result = apply_event(document, make_event("SessionStart", session_id="new"), make_context(pid=500))

        assert result.superseded == ["old"]
        assert document.sessions_with_pid(500) == ["new"]
        assert set(document.instances) == {"new", "other"}

    def test_restart_of_same_session_keeps_single_record(self, make_event, make_context):
        document = StatusDocument.empty()
        apply_event(document, make_event("SessionStart"), make_context(pid=500))
        apply_event(document, make_event("UserPromptSubmit"), make_context())
        result = apply_event(document, make_event("SessionStart"), make_context(pid=500))

        assert result.superseded == []
        assert list(document.instances) == ["s1"]
        assert document.instances["s1"].status == SessionStatus.IDLE
