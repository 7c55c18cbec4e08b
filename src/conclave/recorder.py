"""Feed finished sessions into working memory and the knowledge store."""

from __future__ import annotations

import logging
import re
from datetime import datetime, timezone
from pathlib import Path
from typing import Callable

from .knowledge.extraction import SessionTranscript
from .knowledge.models import Outcome
from .knowledge.store import KnowledgeStore
from .memory.models import EntryKind, SessionHandoff
from .memory.store import WorkingMemoryStore
from .sessions.launcher import AgentExit
from .sessions.models import SessionInstance

logger = logging.getLogger(__name__)

_MARKER = re.compile(r"^\s*(TODO|DONE|COMPLETED|BLOCKED|QUESTION|NEXT|ERROR):\s*(.+?)\s*$", re.IGNORECASE | re.MULTILINE)

_FIELDS = {
    "TODO": "todos",
    "DONE": "completed",
    "COMPLETED": "completed",
    "BLOCKED": "blocked",
    "QUESTION": "questions",
    "NEXT": "next_steps",
    "ERROR": "errors",
}


def parse_markers(output: str) -> dict[str, list[str]]:
    """Collect ``TODO:``/``DONE:``/``BLOCKED:``/``QUESTION:``/``NEXT:``/``ERROR:`` lines."""

    found: dict[str, list[str]] = {name: [] for name in set(_FIELDS.values())}
    for marker, content in _MARKER.findall(output):
        found[_FIELDS[marker.upper()]].append(content)
    return found


def session_outcome(result: AgentExit | None) -> Outcome:
    if result is None:
        return "partial"
    return "success" if result.ok else "failed"


class SessionRecorder:
    """Completion listener that turns an ended session into a handoff and a history entry."""

    def __init__(
        self,
        memory: WorkingMemoryStore,
        knowledge: KnowledgeStore,
        *,
        session_dir: Callable[[str], Path] | None = None,
        keep_recent_sessions: int = 10,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self._memory = memory
        self._knowledge = knowledge
        self._session_dir = session_dir
        self._keep_recent = keep_recent_sessions
        self._clock = clock or (lambda: datetime.now(timezone.utc))

    def __call__(self, session: SessionInstance, result: AgentExit | None) -> None:
        self.on_session_end(session, result)

    def on_session_end(self, session: SessionInstance, result: AgentExit | None) -> SessionHandoff:
        output = result.stdout if result is not None else ""
        markers = parse_markers(output)
        handoff = self._build_handoff(session, result, markers)

        self._memory.add_handoff(session.project, handoff)
        for kind, items in (
            (EntryKind.TODO, handoff.todos),
            (EntryKind.BLOCKED, handoff.blocked),
            (EntryKind.COMPLETED, handoff.completed),
            (EntryKind.QUESTION, handoff.questions),
        ):
            for content in items:
                self._memory.add_entry(session.project, kind, content, session_id=session.id)

        errors = list(markers["errors"])
        if result is not None and not result.ok and result.stderr.strip():
            errors.append(result.stderr.strip().splitlines()[-1])

        self._knowledge.record_session(
            SessionTranscript(
                session_id=session.id,
                project=session.project,
                started_at=session.started_at,
                ended_at=session.ended_at or self._clock(),
                task_type=session.task.kind.value,
                outcome=session_outcome(result),
                conversation=[line for line in output.splitlines() if line.strip()],
                artifacts=list(handoff.files_modified),
                errors=errors,
            )
        )
        self._knowledge.compress_old_sessions(session.project, self._keep_recent)

        logger.info(
            "Recorded session handoff",
            extra={
                "session_id": session.id,
                "completed": len(handoff.completed),
                "todos": len(handoff.todos),
                "blocked": len(handoff.blocked),
            },
        )
        return handoff

    def _build_handoff(
        self,
        session: SessionInstance,
        result: AgentExit | None,
        markers: dict[str, list[str]],
    ) -> SessionHandoff:
        ended_at = session.ended_at or self._clock()
        if self._session_dir is not None:
            directory = self._session_dir(session.id)
            if (directory / "session-summary.json").exists():
                handoff = self._memory.load_handoff(
                    session.id,
                    session.project,
                    directory,
                    task_description=session.task.description,
                    started_at=session.started_at,
                )
                return handoff.model_copy(update={"ended_at": ended_at})

        next_steps = list(markers["next_steps"])
        if not markers["completed"] and not markers["blocked"]:
            next_steps.append("Review session output to determine what was accomplished")
        if result is not None and not result.ok:
            next_steps.append("Investigate and resolve any build or execution errors")

        return SessionHandoff(
            session_id=session.id,
            project=session.project,
            started_at=session.started_at,
            ended_at=ended_at,
            task_description=session.task.description,
            completed=markers["completed"],
            blocked=markers["blocked"],
            todos=markers["todos"],
            questions=markers["questions"],
            next_steps=next_steps,
        )


__all__ = ["SessionRecorder", "parse_markers", "session_outcome"]
