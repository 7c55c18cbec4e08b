"""Plans and results for multi-project feature work."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Literal

from ..sessions.models import SessionInstance


class Strategy(str, Enum):
    DEPENDENCY_AWARE = "dependency-aware"
    SEQUENTIAL = "sequential"
    PARALLEL = "parallel"


@dataclass(frozen=True, slots=True)
class FeatureRequest:
    feature: str
    projects: tuple[str, ...] = ()
    max_sessions: int = 3
    strategy: Strategy = Strategy.DEPENDENCY_AWARE
    priority: int = 50

    def __post_init__(self) -> None:
        if self.max_sessions < 1:
            raise ValueError("max_sessions must be at least 1")


@dataclass(frozen=True, slots=True)
class FeatureScope:
    primary_projects: tuple[str, ...]
    secondary_projects: tuple[str, ...] = ()
    shared_resources: tuple[str, ...] = ()

    @property
    def all_projects(self) -> tuple[str, ...]:
        return (*self.primary_projects, *self.secondary_projects)

    @property
    def coordination_required(self) -> bool:
        return len(self.primary_projects) > 1

    @property
    def estimated_session_count(self) -> int:
        return len(self.primary_projects)


@dataclass(frozen=True, slots=True)
class Phase:
    """Projects whose sessions run together before the orchestrator advances."""

    index: int
    projects: tuple[str, ...]
    parallelizable: bool
    dependencies: tuple[str, ...] = ()
    estimated_duration: float = 0.0


@dataclass(frozen=True, slots=True)
class CoordinationPoint:
    """Advisory hint for consumers; the orchestrator does not enforce it."""

    phase: int
    projects: tuple[str, ...]
    kind: Literal["sync", "async"]
    trigger: str
    actions: tuple[str, ...]


@dataclass(frozen=True, slots=True)
class OrchestrationPlan:
    phases: tuple[Phase, ...]
    coordination_points: tuple[CoordinationPoint, ...] = ()
    total_estimated_duration: float = 0.0
    concurrency_map: dict[str, int] = field(default_factory=dict)

    def to_dict(self) -> dict[str, object]:
        return {
            "phases": [
                {
                    "index": phase.index,
                    "projects": list(phase.projects),
                    "parallelizable": phase.parallelizable,
                    "dependencies": list(phase.dependencies),
                    "estimated_duration": phase.estimated_duration,
                }
                for phase in self.phases
            ],
            "coordination_points": [
                {
                    "phase": point.phase,
                    "projects": list(point.projects),
                    "kind": point.kind,
                    "trigger": point.trigger,
                    "actions": list(point.actions),
                }
                for point in self.coordination_points
            ],
            "total_estimated_duration": self.total_estimated_duration,
            "concurrency_map": dict(self.concurrency_map),
        }


@dataclass(slots=True)
class OrchestrationResult:
    success: bool
    sessions: list[SessionInstance]
    duration: float
    error: str | None = None

    @property
    def sessions_per_project(self) -> dict[str, int]:
        counts: dict[str, int] = {}
        for session in self.sessions:
            counts[session.project] = counts.get(session.project, 0) + 1
        return counts

    def to_dict(self) -> dict[str, object]:
        return {
            "success": self.success,
            "duration": self.duration,
            "error": self.error,
            "sessions": [
                {"id": session.id, "project": session.project, "status": session.status.value}
                for session in self.sessions
            ],
            "sessions_per_project": self.sessions_per_project,
        }


__all__ = [
    "CoordinationPoint",
    "FeatureRequest",
    "FeatureScope",
    "OrchestrationPlan",
    "OrchestrationResult",
    "Phase",
    "Strategy",
]
