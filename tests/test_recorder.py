from __future__ import annotations

import json
from datetime import datetime, timedelta, timezone
from pathlib import Path

from conclave.knowledge import KnowledgeStore
from conclave.memory import WorkingMemoryStore
from conclave.recorder import SessionRecorder, parse_markers, session_outcome
from conclave.sessions.launcher import AgentExit
from conclave.sessions.models import SessionInstance, SessionStatus, TaskDescriptor, TaskKind

STARTED = datetime(2025, 7, 1, 9, 0, tzinfo=timezone.utc)


def make_session(session_id: str = "api-1", status: SessionStatus = SessionStatus.COMPLETED) -> SessionInstance:
    return SessionInstance(
        id=session_id,
        project="@acme/api",
        task=TaskDescriptor(kind=TaskKind.BUG_FIX, description="Fix token refresh"),
        context=None,
        started_at=STARTED,
        status=status,
        ended_at=STARTED + timedelta(minutes=40),
    )


def make_recorder(tmp_path: Path, **kwargs):  # type: ignore[no-untyped-def]
    memory = WorkingMemoryStore(tmp_path)
    knowledge = KnowledgeStore(tmp_path)
    return SessionRecorder(memory, knowledge, **kwargs), memory, knowledge


def test_parse_markers_groups_lines() -> None:
    output = "\n".join(
        [
            "TODO: add retries",
            "  done: wired refresh",
            "COMPLETED: removed dead code",
            "BLOCKED: staging is down",
            "QUESTION: keep v1 endpoint?",
            "NEXT: load test",
            "ERROR: flaky test",
            "not a TODO: inline marker",
        ]
    )

    markers = parse_markers(output)

    assert markers["todos"] == ["add retries"]
    assert markers["completed"] == ["wired refresh", "removed dead code"]
    assert markers["blocked"] == ["staging is down"]
    assert markers["questions"] == ["keep v1 endpoint?"]
    assert markers["next_steps"] == ["load test"]
    assert markers["errors"] == ["flaky test"]


def test_session_outcome_mapping() -> None:
    assert session_outcome(None) == "partial"
    assert session_outcome(AgentExit(returncode=0, stdout="", stderr="")) == "success"
    assert session_outcome(AgentExit(returncode=3, stdout="", stderr="")) == "failed"


def test_markers_flow_into_memory_and_history(tmp_path: Path) -> None:
    recorder, memory, knowledge = make_recorder(tmp_path)
    memory.add_entry("@acme/api", "todo", "wired refresh")
    output = "TODO: add retries\nDONE: wired refresh\nBLOCKED: staging is down\nQUESTION: keep v1?\n"

    handoff = recorder.on_session_end(make_session(), AgentExit(returncode=0, stdout=output, stderr=""))

    state = memory.get_or_create("@acme/api")
    history = knowledge.collection("@acme/api").history
    assert handoff.completed == ["wired refresh"]
    assert handoff.next_steps == []
    assert [todo.content for todo in state.current_todos] == ["add retries"]
    assert [item.content for item in state.blocked_items] == ["staging is down"]
    assert [item.content for item in state.open_questions] == ["keep v1?"]
    assert state.recent_handoffs[0].session_id == "api-1"
    assert history.recent_sessions[0].outcome == "success"
    assert history.recent_sessions[0].task_type == "bug-fix"


def test_failed_session_gets_default_next_steps_and_error(tmp_path: Path) -> None:
    recorder, _, knowledge = make_recorder(tmp_path)
    result = AgentExit(returncode=1, stdout="working...\n", stderr="Traceback\nRuntimeError: boom\n")

    handoff = recorder.on_session_end(make_session(status=SessionStatus.FAILED), result)

    assert handoff.next_steps == [
        "Review session output to determine what was accomplished",
        "Investigate and resolve any build or execution errors",
    ]
    pitfalls = knowledge.collection("@acme/api").history.accumulated_knowledge.pitfalls
    assert [issue.issue for issue in pitfalls] == ["RuntimeError: boom"]


def test_terminated_session_is_partial(tmp_path: Path) -> None:
    recorder, _, knowledge = make_recorder(tmp_path)

    recorder(make_session(status=SessionStatus.FAILED), None)

    assert knowledge.collection("@acme/api").history.recent_sessions[0].outcome == "partial"


def test_session_summary_file_takes_precedence(tmp_path: Path) -> None:
    session_root = tmp_path / "sessions"
    (session_root / "api-1").mkdir(parents=True)
    (session_root / "api-1" / "session-summary.json").write_text(
        json.dumps({"completed": ["from summary"], "files_modified": ["api/auth.py"], "build_status": "success"}),
        encoding="utf-8",
    )
    recorder, _, knowledge = make_recorder(tmp_path, session_dir=lambda session_id: session_root / session_id)

    handoff = recorder.on_session_end(
        make_session(), AgentExit(returncode=0, stdout="DONE: from markers\n", stderr="")
    )

    assert handoff.completed == ["from summary"]
    assert handoff.build_status == "success"
    assert handoff.ended_at == STARTED + timedelta(minutes=40)
    assert handoff.task_description == "Fix token refresh"
    assert knowledge.collection("@acme/api").history.recent_sessions[0].artifacts_created == ["api/auth.py"]


def test_history_is_compressed_past_retention(tmp_path: Path) -> None:
    recorder, _, knowledge = make_recorder(tmp_path, keep_recent_sessions=2)

    for number in range(4):
        recorder.on_session_end(make_session(f"api-{number}"), AgentExit(returncode=0, stdout="", stderr=""))

    history = knowledge.collection("@acme/api").history
    assert [summary.id for summary in history.recent_sessions] == ["api-3", "api-2"]
    assert history.total_session_count == 4
    assert len(history.accumulated_knowledge.decisions) == 2
