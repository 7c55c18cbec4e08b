"""Per-project working memory: bounded journal, rolling narrative, session briefs."""

from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any, Callable

from pydantic import ValidationError

from ..storage.documents import DocumentStore, project_key
from .models import (
    MAX_ENTRIES_PER_KIND,
    MAX_HANDOFFS,
    EntryKind,
    ProjectWorkingMemory,
    SessionHandoff,
    WorkingMemoryEntry,
)
from .narrative import fold_into_narrative, format_handoff, relative_age

logger = logging.getLogger(__name__)


def _prepend(entries: list[Any], item: Any, cap: int) -> list[Any]:
    return [item, *entries][:cap]


class WorkingMemoryStore:
    """Owns the working memory of every project it has touched.

    Records are cached per instance and written back after each mutation. Two
    instances (or processes) writing the same project race; the last write wins.
    """

    def __init__(
        self,
        root: Path,
        *,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self._documents = DocumentStore(Path(root) / "memory")
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self._cache: dict[str, ProjectWorkingMemory] = {}

    def path_for(self, project: str) -> Path:
        return self._documents.path_for(f"{project_key(project)}.working-memory.json")

    def get_or_create(self, project: str) -> ProjectWorkingMemory:
        cached = self._cache.get(project)
        if cached is not None:
            return cached

        path = self.path_for(project)
        existed = path.exists()
        raw = self._documents.read(path)
        if isinstance(raw, dict):
            try:
                memory = ProjectWorkingMemory.model_validate(
                    {"project": project, "last_updated": self._clock(), **raw}
                )
            except ValidationError as exc:
                logger.warning(
                    "Discarding unreadable working memory",
                    extra={"project": project, "error": str(exc)},
                )
            else:
                self._cache[project] = memory
                return memory

        memory = ProjectWorkingMemory(project=project, last_updated=self._clock())
        self._cache[project] = memory
        # An unreadable file stays on disk until the next mutation replaces it.
        if not existed:
            self._save(memory)
        return memory

    def add_entry(
        self,
        project: str,
        kind: EntryKind | str,
        content: str,
        *,
        session_id: str = "manual",
        metadata: dict[str, Any] | None = None,
    ) -> WorkingMemoryEntry:
        """Timestamp an entry and route it to the list matching its kind."""

        memory = self.get_or_create(project)
        entry = WorkingMemoryEntry(
            timestamp=self._clock(),
            session_id=session_id,
            kind=EntryKind(kind),
            content=content,
            metadata=metadata,
        )

        if entry.kind is EntryKind.TODO:
            memory.current_todos = _prepend(memory.current_todos, entry, MAX_ENTRIES_PER_KIND)
        elif entry.kind is EntryKind.COMPLETED:
            memory.current_todos = [todo for todo in memory.current_todos if todo.content != content]
            memory.recent_changes = _prepend(memory.recent_changes, entry, MAX_ENTRIES_PER_KIND)
        elif entry.kind is EntryKind.BLOCKED:
            memory.blocked_items = _prepend(memory.blocked_items, entry, MAX_ENTRIES_PER_KIND)
        elif entry.kind is EntryKind.QUESTION:
            memory.open_questions = _prepend(memory.open_questions, entry, MAX_ENTRIES_PER_KIND)
        else:
            memory.recent_changes = _prepend(memory.recent_changes, entry, MAX_ENTRIES_PER_KIND)

        memory.last_updated = entry.timestamp
        self._save(memory)
        return entry

    def resolve_blocked(self, project: str, content: str) -> int:
        """Drop blocked items whose content matches exactly; returns how many were removed."""

        memory = self.get_or_create(project)
        remaining = [item for item in memory.blocked_items if item.content != content]
        removed = len(memory.blocked_items) - len(remaining)
        if removed:
            memory.blocked_items = remaining
            memory.last_updated = self._clock()
            self._save(memory)
        return removed

    def add_handoff(self, project: str, handoff: SessionHandoff) -> None:
        memory = self.get_or_create(project)
        memory.recent_handoffs = _prepend(memory.recent_handoffs, handoff, MAX_HANDOFFS)
        memory.current_context = fold_into_narrative(memory.current_context, format_handoff(handoff))
        memory.last_updated = self._clock()
        self._save(memory)

    def generate_session_context(self, project: str) -> str:
        """Render the brief a new session in ``project`` starts from."""

        memory = self.get_or_create(project)
        now = self._clock()
        parts = [
            f"# Working Memory for {project}",
            f"Last Updated: {memory.last_updated.isoformat()}",
        ]

        if memory.current_context:
            parts.append(f"## Current State\n{memory.current_context}")
        if memory.current_todos:
            parts.append(
                "## Active TODOs\n"
                + "\n".join(
                    f"- {todo.content} (from session: {todo.session_id or 'unknown'})"
                    for todo in memory.current_todos[:10]
                )
            )
        if memory.blocked_items:
            parts.append("## Blocked Items\n" + "\n".join(f"- {item.content}" for item in memory.blocked_items[:5]))
        if memory.open_questions:
            parts.append(
                "## Open Questions\n" + "\n".join(f"- {question.content}" for question in memory.open_questions[:5])
            )
        if memory.recent_changes:
            parts.append(
                "## Recent Changes\n"
                + "\n".join(
                    f"- {change.content} ({relative_age(change.timestamp, now)})"
                    for change in memory.recent_changes[:10]
                )
            )
        if memory.recent_handoffs:
            parts.append("## Last Session Summary\n" + format_handoff(memory.recent_handoffs[0]))

        return "\n\n".join(parts) + "\n"

    def cleanup_old_entries(self, project: str, max_age_hours: float = 72) -> int:
        """Drop todos, changes and questions older than the cutoff.

        Blocked items are kept until resolved explicitly with ``resolve_blocked``.
        Returns the number of entries removed.
        """

        memory = self.get_or_create(project)
        cutoff = self._clock() - timedelta(hours=max_age_hours)
        before = len(memory.current_todos) + len(memory.recent_changes) + len(memory.open_questions)

        memory.current_todos = [todo for todo in memory.current_todos if todo.timestamp > cutoff]
        memory.recent_changes = [change for change in memory.recent_changes if change.timestamp > cutoff]
        memory.open_questions = [question for question in memory.open_questions if question.timestamp > cutoff]

        removed = before - (len(memory.current_todos) + len(memory.recent_changes) + len(memory.open_questions))
        self._save(memory)
        logger.info("Cleaned working memory", extra={"project": project, "removed": removed})
        return removed

    def load_handoff(
        self,
        session_id: str,
        project: str,
        session_dir: Path,
        *,
        task_description: str = "Session task",
        started_at: datetime | None = None,
    ) -> SessionHandoff:
        """Build a handoff from the ``session-summary.json`` an agent leaves in its session dir."""

        now = self._clock()
        payload: dict[str, Any] = {
            "session_id": session_id,
            "project": project,
            "started_at": started_at or now,
            "ended_at": now,
            "task_description": task_description,
        }
        summary = DocumentStore(session_dir).read(Path(session_dir) / "session-summary.json")
        if isinstance(summary, dict):
            payload.update({key: value for key, value in summary.items() if key not in {"session_id", "project"}})

        try:
            return SessionHandoff.model_validate(payload)
        except ValidationError as exc:
            logger.warning("Ignoring malformed session summary", extra={"session_id": session_id, "error": str(exc)})
            return SessionHandoff(
                session_id=session_id,
                project=project,
                started_at=started_at or now,
                ended_at=now,
                task_description=task_description,
            )

    def _save(self, memory: ProjectWorkingMemory) -> bool:
        return self._documents.write(self.path_for(memory.project), memory.model_dump(mode="json"))


__all__ = ["WorkingMemoryStore"]
