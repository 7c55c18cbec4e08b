"""Persisted working-memory documents."""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Any, Literal

from pydantic import BaseModel, Field, TypeAdapter, ValidationError, field_validator

MAX_ENTRIES_PER_KIND = 20
MAX_HANDOFFS = 5
MAX_CONTEXT_LENGTH = 5000


class EntryKind(str, Enum):
    TODO = "todo"
    COMPLETED = "completed"
    BLOCKED = "blocked"
    QUESTION = "question"
    DECISION = "decision"
    CHANGE = "change"


class WorkingMemoryEntry(BaseModel):
    timestamp: datetime
    session_id: str
    kind: EntryKind
    content: str
    metadata: dict[str, Any] | None = None


class SessionHandoff(BaseModel):
    """What one session leaves behind for the next."""

    session_id: str
    project: str
    started_at: datetime
    ended_at: datetime
    task_description: str
    completed: list[str] = Field(default_factory=list)
    blocked: list[str] = Field(default_factory=list)
    todos: list[str] = Field(default_factory=list)
    questions: list[str] = Field(default_factory=list)
    next_steps: list[str] = Field(default_factory=list)
    files_modified: list[str] = Field(default_factory=list)
    build_status: Literal["success", "failed", "not-run"] | None = "not-run"
    tests_status: Literal["passing", "failing", "not-run"] | None = "not-run"


_ENTRY_ADAPTER = TypeAdapter(WorkingMemoryEntry)
_HANDOFF_ADAPTER = TypeAdapter(SessionHandoff)


def _keep_valid(value: Any, adapter: TypeAdapter[Any], required: str) -> list[Any]:
    """Validate list items one at a time, dropping the ones that do not fit."""

    if not isinstance(value, list):
        return []
    kept = []
    for item in value:
        if isinstance(item, BaseModel):
            kept.append(item)
            continue
        if not isinstance(item, dict) or not item.get(required):
            continue
        try:
            kept.append(adapter.validate_python(item))
        except ValidationError:
            continue
    return kept


class ProjectWorkingMemory(BaseModel):
    """Bounded per-project journal plus a rolling narrative.

    Every list is most-recent-first.
    """

    project: str
    last_updated: datetime
    current_todos: list[WorkingMemoryEntry] = Field(default_factory=list)
    recent_changes: list[WorkingMemoryEntry] = Field(default_factory=list)
    open_questions: list[WorkingMemoryEntry] = Field(default_factory=list)
    blocked_items: list[WorkingMemoryEntry] = Field(default_factory=list)
    recent_handoffs: list[SessionHandoff] = Field(default_factory=list)
    current_context: str = ""

    @field_validator("current_todos", "recent_changes", "open_questions", "blocked_items", mode="before")
    @classmethod
    def _validate_entries(cls, value: Any) -> list[Any]:
        return _keep_valid(value, _ENTRY_ADAPTER, "content")[:MAX_ENTRIES_PER_KIND]

    @field_validator("recent_handoffs", mode="before")
    @classmethod
    def _validate_handoffs(cls, value: Any) -> list[Any]:
        return _keep_valid(value, _HANDOFF_ADAPTER, "session_id")[:MAX_HANDOFFS]

    @field_validator("current_context", mode="before")
    @classmethod
    def _validate_context(cls, value: Any) -> str:
        return value if isinstance(value, str) else ""


__all__ = [
    "EntryKind",
    "MAX_CONTEXT_LENGTH",
    "MAX_ENTRIES_PER_KIND",
    "MAX_HANDOFFS",
    "ProjectWorkingMemory",
    "SessionHandoff",
    "WorkingMemoryEntry",
]
