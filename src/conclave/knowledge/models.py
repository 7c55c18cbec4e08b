"""Persisted knowledge records for the workspace and per-project tiers."""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Any, Literal

from pydantic import BaseModel, Field, field_validator


class KnowledgeScope(str, Enum):
    """Breadth of a record: global to the workspace or specific to one project."""

    WORKSPACE = "workspace"
    LIBRARY = "library"


def _ensure_list(value: Any) -> list[Any]:
    if value is None:
        return []
    if isinstance(value, (list, tuple)):
        return list(value)
    raise TypeError("Expected a sequence")


class Decision(BaseModel):
    id: str
    title: str
    description: str = ""
    reasoning: str = ""
    impact: str = ""
    alternatives: list[str] = Field(default_factory=list)
    scope: KnowledgeScope
    project: str | None = None
    session_id: str | None = None
    timestamp: datetime
    tags: list[str] = Field(default_factory=list)

    @field_validator("alternatives", "tags", mode="before")
    @classmethod
    def _lists(cls, value: Any) -> list[Any]:
        return _ensure_list(value)


class Pattern(BaseModel):
    id: str
    name: str
    description: str = ""
    code: str = ""
    language: str = "python"
    use_case: str = ""
    complexity: Literal["low", "medium", "high"] = "medium"
    scope: KnowledgeScope
    project: str | None = None
    timestamp: datetime
    tags: list[str] = Field(default_factory=list)
    related_patterns: list[str] = Field(default_factory=list)

    @field_validator("tags", "related_patterns", mode="before")
    @classmethod
    def _lists(cls, value: Any) -> list[Any]:
        return _ensure_list(value)


Outcome = Literal["success", "partial", "failed"]


class SessionSummary(BaseModel):
    id: str
    date: datetime
    task_type: str
    outcome: Outcome
    key_decisions: list[str] = Field(default_factory=list)
    artifacts_created: list[str] = Field(default_factory=list)


class CodePattern(BaseModel):
    pattern: str
    description: str
    context: str
    examples: list[str] = Field(default_factory=list)
    confidence: float = Field(ge=0.0, le=1.0)


class ArchitecturalDecision(BaseModel):
    decision: str
    rationale: str
    alternatives: list[str] = Field(default_factory=list)
    consequences: list[str] = Field(default_factory=list)
    date: datetime


class ReusableSolution(BaseModel):
    problem: str
    solution: str
    prerequisites: list[str] = Field(default_factory=list)
    variations: list[str] = Field(default_factory=list)
    applicable_contexts: list[str] = Field(default_factory=list)


class KnownIssue(BaseModel):
    issue: str
    symptoms: list[str] = Field(default_factory=list)
    root_cause: str = "Unknown"
    workarounds: list[str] = Field(default_factory=list)
    permanent_solution: str | None = None


class CrossProjectInsight(BaseModel):
    projects: list[str]
    insight: str
    implications: list[str] = Field(default_factory=list)
    coordination_required: bool = True


class DistilledKnowledge(BaseModel):
    patterns: list[CodePattern] = Field(default_factory=list)
    decisions: list[ArchitecturalDecision] = Field(default_factory=list)
    solutions: list[ReusableSolution] = Field(default_factory=list)
    pitfalls: list[KnownIssue] = Field(default_factory=list)
    cross_project_insights: list[CrossProjectInsight] = Field(default_factory=list)

    def merged(self, other: "DistilledKnowledge") -> "DistilledKnowledge":
        return DistilledKnowledge(
            patterns=[*self.patterns, *other.patterns],
            decisions=[*self.decisions, *other.decisions],
            solutions=[*self.solutions, *other.solutions],
            pitfalls=[*self.pitfalls, *other.pitfalls],
            cross_project_insights=[*self.cross_project_insights, *other.cross_project_insights],
        )


class CompressedSessionHistory(BaseModel):
    """Recent session summaries plus everything distilled from older ones.

    ``recent_sessions`` is most-recent-first.
    """

    recent_sessions: list[SessionSummary] = Field(default_factory=list)
    accumulated_knowledge: DistilledKnowledge = Field(default_factory=DistilledKnowledge)
    total_session_count: int = 0
    last_compression_date: datetime | None = None


class KnowledgeCollection(BaseModel):
    """Everything stored for one scope: the workspace, or a single project."""

    decisions: list[Decision] = Field(default_factory=list)
    patterns: list[Pattern] = Field(default_factory=list)
    history: CompressedSessionHistory = Field(default_factory=CompressedSessionHistory)


class KnowledgeSearchResults(BaseModel):
    patterns: list[CodePattern] = Field(default_factory=list)
    solutions: list[ReusableSolution] = Field(default_factory=list)
    decisions: list[ArchitecturalDecision] = Field(default_factory=list)
    insights: list[CrossProjectInsight] = Field(default_factory=list)

    @property
    def total(self) -> int:
        return len(self.patterns) + len(self.solutions) + len(self.decisions) + len(self.insights)


class HierarchicalView(BaseModel):
    project: str
    workspace: KnowledgeCollection
    library: KnowledgeCollection
    decisions: list[Decision]
    patterns: list[Pattern]
    inheritance_chain: list[str]


__all__ = [
    "ArchitecturalDecision",
    "CodePattern",
    "CompressedSessionHistory",
    "CrossProjectInsight",
    "Decision",
    "DistilledKnowledge",
    "HierarchicalView",
    "KnowledgeCollection",
    "KnowledgeScope",
    "KnowledgeSearchResults",
    "KnownIssue",
    "Outcome",
    "Pattern",
    "ReusableSolution",
    "SessionSummary",
]
