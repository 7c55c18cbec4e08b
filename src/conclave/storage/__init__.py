"""Persistence helpers for Conclave."""

from .documents import DocumentStore, project_key
from .events import EventStoreUnavailableError, SessionEvent, SessionEventStore
from .models import SessionTrackingRecord

__all__ = [
    "DocumentStore",
    "EventStoreUnavailableError",
    "SessionEvent",
    "SessionEventStore",
    "SessionTrackingRecord",
    "project_key",
]
