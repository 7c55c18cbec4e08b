"""Session and task models shared by the pool and orchestrator."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from ..workspace.context import SessionContext


class TaskKind(str, Enum):
    FEATURE = "feature"
    BUG_FIX = "bug-fix"
    REFACTOR = "refactor"
    TEST = "test"
    DOCUMENTATION = "documentation"


class Complexity(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


class SessionStatus(str, Enum):
    """Lifecycle states; transitions only move forward."""

    PENDING = "pending"
    ACTIVE = "active"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def terminal(self) -> bool:
        return self in {SessionStatus.COMPLETED, SessionStatus.FAILED}


_ALLOWED_TRANSITIONS = {
    SessionStatus.PENDING: {SessionStatus.ACTIVE, SessionStatus.FAILED},
    SessionStatus.ACTIVE: {SessionStatus.COMPLETED, SessionStatus.FAILED},
    SessionStatus.COMPLETED: set(),
    SessionStatus.FAILED: set(),
}


@dataclass(frozen=True, slots=True)
class TaskDescriptor:
    """What a session is asked to do."""

    kind: TaskKind
    description: str
    scope: tuple[str, ...] = ()
    base_priority: int = 50
    complexity: Complexity = Complexity.MEDIUM
    cross_project_dependencies: tuple[str, ...] = ()


@dataclass(slots=True)
class SessionInstance:
    """A single agent session owned by a pool."""

    id: str
    project: str
    task: TaskDescriptor
    context: SessionContext | None
    started_at: datetime
    status: SessionStatus = SessionStatus.PENDING
    ended_at: datetime | None = None
    exit_code: int | None = None
    metadata: dict[str, Any] = field(default_factory=dict)

    def transition(self, status: SessionStatus, *, at: datetime | None = None) -> None:
        if status not in _ALLOWED_TRANSITIONS[self.status]:
            raise ValueError(
                f"Session {self.id} cannot move from {self.status.value} to {status.value}"
            )
        self.status = status
        if status.terminal:
            self.ended_at = at or self.ended_at

    @property
    def duration_seconds(self) -> float | None:
        if self.ended_at is None:
            return None
        return (self.ended_at - self.started_at).total_seconds()


__all__ = [
    "Complexity",
    "SessionInstance",
    "SessionStatus",
    "TaskDescriptor",
    "TaskKind",
]
