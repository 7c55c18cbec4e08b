"""Turn raw session transcripts into candidate knowledge records.

Extraction is plain text matching. It will miss things and it will mislabel
things; callers should treat its output as candidates rather than facts.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from datetime import datetime
from typing import Iterable, Protocol

from .models import (
    ArchitecturalDecision,
    CodePattern,
    CrossProjectInsight,
    DistilledKnowledge,
    KnownIssue,
    Outcome,
    ReusableSolution,
)

_CODE_FENCE = re.compile(r"```[^\n]*\n?(.*?)```", re.DOTALL)

CODE_PATTERN_KEYWORDS: dict[str, tuple[str, ...]] = {
    "async-await": ("async ", "await ", "asyncio"),
    "error-handling": ("try:", "except ", "raise "),
    "type-guards": ("isinstance(", "TypeGuard", "typing.cast"),
    "context-managers": ("with ", "__enter__", "contextmanager"),
    "dependency-injection": ("inject", "provider", "factory"),
}

DECISION_KEYWORDS = ("decided", "chose", "approach", "architecture", "design", "pattern")


@dataclass(slots=True)
class SessionTranscript:
    """What a finished session produced, as seen by the extractor."""

    session_id: str
    project: str
    started_at: datetime
    ended_at: datetime
    task_type: str
    outcome: Outcome
    conversation: list[str] = field(default_factory=list)
    artifacts: list[str] = field(default_factory=list)
    errors: list[str] = field(default_factory=list)


class KnowledgeExtractor(Protocol):
    def extract(self, transcript: SessionTranscript) -> DistilledKnowledge:
        ...


def _code_blocks(conversation: Iterable[str]) -> list[str]:
    blocks: list[str] = []
    for message in conversation:
        blocks.extend(block.strip() for block in _CODE_FENCE.findall(message))
    return blocks


class HeuristicExtractor:
    """Keyword-driven extractor over transcripts."""

    def __init__(self, known_projects: Iterable[str] = ()) -> None:
        self._known_projects = list(known_projects)

    def extract(self, transcript: SessionTranscript) -> DistilledKnowledge:
        return DistilledKnowledge(
            patterns=self.code_patterns(transcript),
            decisions=self.decisions(transcript),
            solutions=self.solutions(transcript),
            pitfalls=self.known_issues(transcript),
            cross_project_insights=self.cross_project_insights(transcript),
        )

    def code_patterns(self, transcript: SessionTranscript) -> list[CodePattern]:
        blocks = _code_blocks(transcript.conversation)
        patterns: list[CodePattern] = []
        for name, keywords in CODE_PATTERN_KEYWORDS.items():
            relevant = [block for block in blocks if any(keyword in block for keyword in keywords)]
            if not relevant:
                continue
            patterns.append(
                CodePattern(
                    pattern=name,
                    description=f"Found {len(relevant)} usage(s) of {name} pattern",
                    context=transcript.project,
                    examples=relevant[:2],
                    confidence=min(len(relevant) * 0.3, 1.0),
                )
            )
        return patterns

    def decisions(self, transcript: SessionTranscript) -> list[ArchitecturalDecision]:
        relevant = [
            message
            for message in transcript.conversation
            if any(keyword in message.lower() for keyword in DECISION_KEYWORDS)
        ]
        if not relevant:
            return []
        return [
            ArchitecturalDecision(
                decision=f"Architectural approach for {transcript.task_type} in {transcript.project}",
                rationale=relevant[0],
                consequences=["Successful implementation"] if transcript.outcome == "success" else ["Needs refinement"],
                date=transcript.ended_at,
            )
        ]

    def solutions(self, transcript: SessionTranscript) -> list[ReusableSolution]:
        if transcript.outcome != "success":
            return []
        return [
            ReusableSolution(
                problem=error,
                solution=f"Resolved during {transcript.task_type} task",
                prerequisites=[f"Working in {transcript.project}"],
                applicable_contexts=[transcript.project],
            )
            for error in transcript.errors
        ]

    def known_issues(self, transcript: SessionTranscript) -> list[KnownIssue]:
        if transcript.outcome == "success":
            return []
        return [
            KnownIssue(
                issue=error,
                symptoms=["Session encountered this error"],
                root_cause="To be investigated",
                workarounds=["Partial solution found"] if transcript.outcome == "partial" else [],
            )
            for error in transcript.errors
        ]

    def cross_project_insights(self, transcript: SessionTranscript) -> list[CrossProjectInsight]:
        text = "\n".join(transcript.conversation)
        mentioned = [
            name
            for name in self._known_projects
            if name != transcript.project and re.search(rf"(?<![\w@/-]){re.escape(name)}(?![\w-])", text, re.IGNORECASE)
        ]
        if not mentioned:
            return []
        return [
            CrossProjectInsight(
                projects=[transcript.project, *mentioned],
                insight=f"Integration work involving {transcript.project} and {', '.join(mentioned)}",
                implications=["Cross-project coordination may be needed"],
                coordination_required=True,
            )
        ]


__all__ = [
    "CODE_PATTERN_KEYWORDS",
    "DECISION_KEYWORDS",
    "HeuristicExtractor",
    "KnowledgeExtractor",
    "SessionTranscript",
]
