"""Records reconstructed from the session event log."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Any


@dataclass(slots=True)
class SessionTrackingRecord:
    session_id: str
    project: str
    status: str
    recorded_at: datetime
    transitions: int
    metadata: dict[str, Any]


__all__ = ["SessionTrackingRecord"]
