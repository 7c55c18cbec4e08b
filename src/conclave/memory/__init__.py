"""Bounded per-project working memory."""

from .models import (
    MAX_CONTEXT_LENGTH,
    MAX_ENTRIES_PER_KIND,
    MAX_HANDOFFS,
    EntryKind,
    ProjectWorkingMemory,
    SessionHandoff,
    WorkingMemoryEntry,
)
from .narrative import fold_into_narrative, format_handoff, relative_age
from .store import WorkingMemoryStore

__all__ = [
    "EntryKind",
    "MAX_CONTEXT_LENGTH",
    "MAX_ENTRIES_PER_KIND",
    "MAX_HANDOFFS",
    "ProjectWorkingMemory",
    "SessionHandoff",
    "WorkingMemoryEntry",
    "WorkingMemoryStore",
    "fold_into_narrative",
    "format_handoff",
    "relative_age",
]
