"""Chroma-backed log of session lifecycle transitions."""

from __future__ import annotations

import json
import uuid
from collections import defaultdict
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Callable, Iterable, Protocol

from .models import SessionTrackingRecord


class EventStoreUnavailableError(RuntimeError):
    """Raised when the Chroma client cannot be constructed."""


class CollectionProtocol(Protocol):
    """Protocol for the minimal Chroma collection API used by Conclave."""

    def add(
        self,
        *,
        documents: Iterable[str],
        metadatas: Iterable[dict[str, Any]],
        ids: Iterable[str],
    ) -> None:
        ...

    def get(
        self,
        *,
        ids: Iterable[str] | None = None,
        where: dict[str, Any] | None = None,
        limit: int | None = None,
    ) -> dict[str, list[Any]]:
        ...


class ClientProtocol(Protocol):
    """Protocol for the minimal Chroma client API used by Conclave."""

    def get_or_create_collection(self, name: str) -> CollectionProtocol:
        ...


@dataclass(slots=True)
class SessionEvent:
    """A single stored lifecycle transition."""

    id: str
    session_id: str
    project: str
    status: str
    document: str
    metadata: dict[str, Any]
    timestamp: datetime


class SessionEventStore:
    """Persist session status transitions so runs can be audited after the process exits."""

    def __init__(
        self,
        path: Path,
        *,
        collection_name: str = "conclave_sessions",
        client_factory: Callable[[], ClientProtocol] | None = None,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self._path = Path(path)
        self._collection_name = collection_name
        self._client_factory = client_factory or self._default_client_factory
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self._collection: CollectionProtocol | None = None
        self._sequence: dict[str, int] = defaultdict(int)

    def _default_client_factory(self) -> ClientProtocol:
        try:
            import chromadb
        except ImportError as exc:  # pragma: no cover - depends on environment
            raise EventStoreUnavailableError(
                "chromadb package is not installed; install conclave-sessions[events]"
            ) from exc

        return chromadb.PersistentClient(path=str(self._path))

    def _ensure_collection(self) -> CollectionProtocol:
        if self._collection is None:
            client = self._client_factory()
            self._collection = client.get_or_create_collection(self._collection_name)
        return self._collection

    def _to_events(self, result: dict[str, list[Any]]) -> list[SessionEvent]:
        events: list[SessionEvent] = []
        for event_id, document, metadata in zip(
            result.get("ids", []), result.get("documents", []), result.get("metadatas", [])
        ):
            raw_timestamp = metadata.get("timestamp")
            events.append(
                SessionEvent(
                    id=event_id,
                    session_id=metadata.get("session_id", ""),
                    project=metadata.get("project", ""),
                    status=metadata.get("status", "unknown"),
                    document=document,
                    metadata=metadata,
                    timestamp=(
                        datetime.fromisoformat(raw_timestamp)
                        if isinstance(raw_timestamp, str)
                        else self._clock()
                    ),
                )
            )
        events.sort(key=lambda event: (event.timestamp, event.metadata.get("sequence", 0)))
        return events

    def ping(self) -> bool:
        """Verify that the underlying collection can be obtained."""

        self._ensure_collection()
        return True

    def record_transition(
        self,
        *,
        session_id: str,
        project: str,
        status: str,
        detail: dict[str, Any] | None = None,
    ) -> SessionEvent:
        """Append one status transition for a session."""

        collection = self._ensure_collection()
        self._sequence[session_id] += 1
        timestamp = self._clock()
        document = json.dumps({"session_id": session_id, "status": status, **(detail or {})})
        metadata = {
            "session_id": session_id,
            "project": project,
            "status": status,
            "timestamp": timestamp.isoformat(),
            "sequence": self._sequence[session_id],
        }
        event_id = f"{session_id}:{uuid.uuid4().hex}"
        collection.add(documents=[document], metadatas=[metadata], ids=[event_id])
        return SessionEvent(
            id=event_id,
            session_id=session_id,
            project=project,
            status=status,
            document=document,
            metadata=metadata,
            timestamp=timestamp,
        )

    def session_timeline(self, session_id: str) -> list[SessionEvent]:
        collection = self._ensure_collection()
        return self._to_events(collection.get(where={"session_id": session_id}))

    def list_sessions(self, project: str | None = None) -> list[SessionTrackingRecord]:
        """Collapse stored transitions to the latest status per session."""

        collection = self._ensure_collection()
        events = self._to_events(collection.get(where={"project": project} if project else None))
        latest: dict[str, SessionTrackingRecord] = {}
        for event in events:
            previous = latest.get(event.session_id)
            latest[event.session_id] = SessionTrackingRecord(
                session_id=event.session_id,
                project=event.project,
                status=event.status,
                recorded_at=event.timestamp,
                transitions=(previous.transitions + 1) if previous else 1,
                metadata=json.loads(event.document),
            )
        return list(latest.values())

    def search(self, query: str, *, project: str | None = None, limit: int | None = None) -> list[SessionEvent]:
        collection = self._ensure_collection()
        events = self._to_events(collection.get(where={"project": project} if project else None))
        needle = query.lower()
        matches = [
            event
            for event in events
            if needle in event.document.lower()
            or any(needle in str(value).lower() for value in event.metadata.values())
        ]
        return matches[:limit] if limit else matches


__all__ = ["SessionEvent", "SessionEventStore", "EventStoreUnavailableError"]
