"""Two-tier knowledge persistence: one workspace collection, one per project."""

from __future__ import annotations

import logging
import uuid
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Callable, Iterable, TypeVar

from pydantic import BaseModel, ValidationError

from ..storage.documents import DocumentStore, project_key
from .extraction import HeuristicExtractor, KnowledgeExtractor, SessionTranscript
from .models import (
    ArchitecturalDecision,
    CompressedSessionHistory,
    Decision,
    DistilledKnowledge,
    HierarchicalView,
    KnowledgeCollection,
    KnowledgeScope,
    KnowledgeSearchResults,
    KnownIssue,
    Pattern,
    SessionSummary,
)

logger = logging.getLogger(__name__)

WORKSPACE_KEY = "workspace"
_DECISIONS_FILE = "decisions.json"
_PATTERNS_FILE = "patterns.json"
_HISTORY_FILE = "session-history.json"

RecordT = TypeVar("RecordT", Decision, Pattern)


def merge_with_override(
    workspace: Iterable[RecordT],
    library: Iterable[RecordT],
    key: Callable[[RecordT], str],
) -> list[RecordT]:
    """Concatenate workspace then project records, keeping the later record per key.

    Survivors keep their workspace-before-project order.
    """

    seen: set[str] = set()
    kept: list[RecordT] = []
    for record in reversed([*workspace, *library]):
        record_key = key(record)
        if record_key in seen:
            continue
        seen.add(record_key)
        kept.append(record)
    kept.reverse()
    return kept


def _load_list(raw: Any, model: type[BaseModel], path: Path) -> list[Any]:
    if not isinstance(raw, list):
        return []
    records = []
    for item in raw:
        try:
            records.append(model.model_validate(item))
        except ValidationError as exc:
            logger.warning("Skipping invalid knowledge record", extra={"path": str(path), "error": str(exc)})
    return records


class KnowledgeStore:
    """Decisions, patterns and compressed session history across both scopes.

    Collections are cached per instance; each mutation rewrites the affected
    document. Persistence failures are logged and the cached copy stays current.
    """

    def __init__(
        self,
        root: Path,
        *,
        extractor: KnowledgeExtractor | None = None,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self._documents = DocumentStore(Path(root) / "knowledge")
        self._extractor: KnowledgeExtractor = extractor or HeuristicExtractor()
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self._collections: dict[str, KnowledgeCollection] = {}

    @property
    def extractor(self) -> KnowledgeExtractor:
        return self._extractor

    def set_extractor(self, extractor: KnowledgeExtractor) -> None:
        self._extractor = extractor

    def _directory(self, owner: str | None) -> tuple[str, ...]:
        if owner is None:
            return (WORKSPACE_KEY,)
        return ("projects", project_key(owner))

    def collection(self, project: str | None = None) -> KnowledgeCollection:
        """Return the workspace collection (``project=None``) or a project's collection."""

        parts = self._directory(project)
        cache_key = "/".join(parts)
        cached = self._collections.get(cache_key)
        if cached is not None:
            return cached

        decisions_path = self._documents.path_for(*parts, _DECISIONS_FILE)
        patterns_path = self._documents.path_for(*parts, _PATTERNS_FILE)
        history_path = self._documents.path_for(*parts, _HISTORY_FILE)

        history = CompressedSessionHistory()
        raw_history = self._documents.read(history_path)
        if isinstance(raw_history, dict):
            try:
                history = CompressedSessionHistory.model_validate(raw_history)
            except ValidationError as exc:
                logger.warning("Discarding unreadable session history", extra={"path": str(history_path), "error": str(exc)})

        collection = KnowledgeCollection(
            decisions=_load_list(self._documents.read(decisions_path), Decision, decisions_path),
            patterns=_load_list(self._documents.read(patterns_path), Pattern, patterns_path),
            history=history,
        )
        self._collections[cache_key] = collection
        return collection

    def get_hierarchical_view(self, project: str) -> HierarchicalView:
        workspace = self.collection(None)
        library = self.collection(project)
        return HierarchicalView(
            project=project,
            workspace=workspace,
            library=library,
            decisions=merge_with_override(workspace.decisions, library.decisions, lambda item: item.title),
            patterns=merge_with_override(workspace.patterns, library.patterns, lambda item: item.name),
            inheritance_chain=[WORKSPACE_KEY, project],
        )

    def record_decision(self, project: str, title: str, **fields: Any) -> Decision:
        return self._add_decision(project, KnowledgeScope.LIBRARY, title, fields)

    def record_workspace_decision(self, title: str, **fields: Any) -> Decision:
        return self._add_decision(None, KnowledgeScope.WORKSPACE, title, fields)

    def record_pattern(self, project: str, name: str, **fields: Any) -> Pattern:
        return self._add_pattern(project, KnowledgeScope.LIBRARY, name, fields)

    def record_workspace_pattern(self, name: str, **fields: Any) -> Pattern:
        return self._add_pattern(None, KnowledgeScope.WORKSPACE, name, fields)

    def record_session(self, transcript: SessionTranscript) -> SessionSummary:
        """Distill a finished session into the project's session history."""

        distilled = self._extractor.extract(transcript)
        summary = SessionSummary(
            id=transcript.session_id,
            date=transcript.ended_at,
            task_type=transcript.task_type,
            outcome=transcript.outcome,
            key_decisions=[decision.rationale for decision in distilled.decisions],
            artifacts_created=list(transcript.artifacts),
        )

        collection = self.collection(transcript.project)
        history = collection.history
        history.recent_sessions.insert(0, summary)
        history.total_session_count += 1
        history.accumulated_knowledge = history.accumulated_knowledge.merged(distilled)
        self._save_history(transcript.project, history)

        logger.info(
            "Recorded session knowledge",
            extra={
                "project": transcript.project,
                "session_id": transcript.session_id,
                "patterns": len(distilled.patterns),
                "decisions": len(distilled.decisions),
            },
        )
        return summary

    def compress_old_sessions(self, project: str, keep_recent: int = 10) -> int:
        """Fold sessions beyond ``keep_recent`` into accumulated knowledge.

        Returns how many sessions were compressed; zero means nothing changed.
        """

        history = self.collection(project).history
        if len(history.recent_sessions) <= keep_recent:
            return 0

        overflow = history.recent_sessions[keep_recent:]
        history.accumulated_knowledge = history.accumulated_knowledge.merged(_distill_summaries(overflow))
        history.recent_sessions = history.recent_sessions[:keep_recent]
        history.last_compression_date = self._clock()
        self._save_history(project, history)

        logger.info("Compressed session history", extra={"project": project, "compressed": len(overflow)})
        return len(overflow)

    def search(self, query: str, project: str | None = None) -> KnowledgeSearchResults:
        """Case-insensitive substring search over accumulated knowledge."""

        needle = query.lower()
        results = KnowledgeSearchResults()
        for name in [project] if project else self.known_projects():
            knowledge = self.collection(name).history.accumulated_knowledge
            results.patterns.extend(
                item
                for item in knowledge.patterns
                if needle in item.pattern.lower() or needle in item.description.lower() or needle in item.context.lower()
            )
            results.solutions.extend(
                item for item in knowledge.solutions if needle in item.problem.lower() or needle in item.solution.lower()
            )
            results.decisions.extend(
                item for item in knowledge.decisions if needle in item.decision.lower() or needle in item.rationale.lower()
            )
            results.insights.extend(
                item
                for item in knowledge.cross_project_insights
                if needle in item.insight.lower() or any(needle in member.lower() for member in item.projects)
            )
        return results

    def known_projects(self) -> list[str]:
        """Project keys with a collection on disk or in this instance's cache."""

        keys = {
            cache_key.split("/", 1)[1]
            for cache_key in self._collections
            if cache_key.startswith("projects/")
        }
        projects_dir = self._documents.path_for("projects")
        if projects_dir.is_dir():
            keys.update(path.name for path in projects_dir.iterdir() if path.is_dir())
        return sorted(keys)

    def _add_decision(
        self,
        project: str | None,
        scope: KnowledgeScope,
        title: str,
        fields: dict[str, Any],
    ) -> Decision:
        now = self._clock()
        decision = Decision(
            id=_record_id(project, now),
            title=title,
            scope=scope,
            project=project,
            timestamp=now,
            **fields,
        )
        collection = self.collection(project)
        collection.decisions.append(decision)
        self._documents.write(
            self._documents.path_for(*self._directory(project), _DECISIONS_FILE),
            [item.model_dump(mode="json") for item in collection.decisions],
        )
        logger.info("Recorded decision", extra={"project": project or WORKSPACE_KEY, "title": title})
        return decision

    def _add_pattern(
        self,
        project: str | None,
        scope: KnowledgeScope,
        name: str,
        fields: dict[str, Any],
    ) -> Pattern:
        now = self._clock()
        pattern = Pattern(
            id=_record_id(project, now),
            name=name,
            scope=scope,
            project=project,
            timestamp=now,
            **fields,
        )
        collection = self.collection(project)
        collection.patterns.append(pattern)
        self._documents.write(
            self._documents.path_for(*self._directory(project), _PATTERNS_FILE),
            [item.model_dump(mode="json") for item in collection.patterns],
        )
        logger.info("Recorded pattern", extra={"project": project or WORKSPACE_KEY, "pattern": name})
        return pattern

    def _save_history(self, project: str, history: CompressedSessionHistory) -> bool:
        return self._documents.write(
            self._documents.path_for(*self._directory(project), _HISTORY_FILE),
            history.model_dump(mode="json"),
        )


def _record_id(project: str | None, moment: datetime) -> str:
    owner = project_key(project) if project else WORKSPACE_KEY
    return f"{owner}-{int(moment.timestamp() * 1000)}-{uuid.uuid4().hex[:6]}"


def _distill_summaries(sessions: list[SessionSummary]) -> DistilledKnowledge:
    return DistilledKnowledge(
        decisions=[
            ArchitecturalDecision(
                decision=f"Session outcome: {session.outcome}",
                rationale=f"Based on {session.task_type} task",
                date=session.date,
            )
            for session in sessions
        ],
        pitfalls=[
            KnownIssue(
                issue=f"Failed {session.task_type} task",
                symptoms=["Session marked as failed"],
            )
            for session in sessions
            if session.outcome == "failed"
        ],
    )


__all__ = ["KnowledgeStore", "WORKSPACE_KEY", "merge_with_override"]
