"""Workspace and per-project knowledge."""

from .extraction import HeuristicExtractor, KnowledgeExtractor, SessionTranscript
from .models import (
    CompressedSessionHistory,
    Decision,
    DistilledKnowledge,
    HierarchicalView,
    KnowledgeCollection,
    KnowledgeScope,
    KnowledgeSearchResults,
    Pattern,
    SessionSummary,
)
from .store import KnowledgeStore, merge_with_override

__all__ = [
    "CompressedSessionHistory",
    "Decision",
    "DistilledKnowledge",
    "HeuristicExtractor",
    "HierarchicalView",
    "KnowledgeCollection",
    "KnowledgeExtractor",
    "KnowledgeScope",
    "KnowledgeSearchResults",
    "KnowledgeStore",
    "Pattern",
    "SessionSummary",
    "SessionTranscript",
    "merge_with_override",
]
