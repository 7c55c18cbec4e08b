"""Context bundles handed to new sessions."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

from .models import ProjectDefinition

if TYPE_CHECKING:
    from ..knowledge.models import CompressedSessionHistory, Decision, Pattern
    from ..knowledge.store import KnowledgeStore
    from ..memory.store import WorkingMemoryStore

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class SessionContext:
    """Everything a session in ``project`` should know before it starts."""

    project: str
    description: str = ""
    dependencies: list[str] = field(default_factory=list)
    conventions: list[str] = field(default_factory=list)
    history: CompressedSessionHistory | None = None
    decisions: list[Decision] = field(default_factory=list)
    patterns: list[Pattern] = field(default_factory=list)
    working_memory: str = ""

    def render(self) -> str:
        sections = [f"# Context for {self.project}"]
        if self.description:
            sections.append(self.description)
        sections.append(
            "## Dependencies\n" + ("\n".join(f"- {name}" for name in self.dependencies) or "- None")
        )
        if self.conventions:
            sections.append("## Conventions\n" + "\n".join(f"- {rule}" for rule in self.conventions))
        if self.decisions:
            sections.append(
                "## Decisions\n"
                + "\n".join(
                    f"- {decision.title} [{decision.scope.value}]"
                    + (f": {decision.reasoning}" if decision.reasoning else "")
                    for decision in self.decisions
                )
            )
        if self.patterns:
            sections.append(
                "## Patterns\n"
                + "\n".join(
                    f"- {pattern.name} [{pattern.scope.value}]"
                    + (f": {pattern.description}" if pattern.description else "")
                    for pattern in self.patterns
                )
            )
        if self.history is not None and self.history.recent_sessions:
            sections.append(
                f"## Session History ({self.history.total_session_count} total)\n"
                + "\n".join(
                    f"- {summary.date.date().isoformat()} {summary.task_type}: {summary.outcome}"
                    for summary in self.history.recent_sessions[:5]
                )
            )
        if self.working_memory:
            sections.append(self.working_memory.strip())
        return "\n\n".join(sections) + "\n"


class ContextProvider:
    """Builds ``SessionContext`` bundles from the project catalog and both stores."""

    def __init__(
        self,
        projects: dict[str, ProjectDefinition],
        knowledge: KnowledgeStore,
        memory: WorkingMemoryStore,
    ) -> None:
        self._projects = dict(projects)
        self._knowledge = knowledge
        self._memory = memory

    @property
    def projects(self) -> dict[str, ProjectDefinition]:
        return dict(self._projects)

    def resolve(self, name: str) -> str:
        """Map a short name such as ``editor-core`` onto a catalog name like ``@acme/editor-core``."""

        if name in self._projects:
            return name
        for candidate in self._projects:
            if candidate.rsplit("/", 1)[-1] == name:
                return candidate
        return name

    def load_context(self, project: str) -> SessionContext:
        name = self.resolve(project)
        definition = self._projects.get(name)
        if definition is None:
            logger.warning("Project not in catalog; building a bare context", extra={"project": name})

        view = self._knowledge.get_hierarchical_view(name)
        return SessionContext(
            project=name,
            description=definition.description if definition else "",
            dependencies=list(definition.dependencies) if definition else [],
            conventions=list(definition.conventions) if definition else [],
            history=view.library.history,
            decisions=view.decisions,
            patterns=view.patterns,
            working_memory=self._memory.generate_session_context(name),
        )


__all__ = ["ContextProvider", "SessionContext"]
