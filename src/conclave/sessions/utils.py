"""Environment helpers for agent subprocesses."""

from __future__ import annotations

import os
from pathlib import Path
from typing import Mapping

from .models import SessionInstance

_SANITIZED_VARS = {
    "PYTHONHOME",
    "PYTHONPATH",
    "VIRTUAL_ENV",
    "PIP_RESPECT_VIRTUALENV",
}


def sanitize_environment(additional: Mapping[str, str] | None = None) -> dict[str, str]:
    """Return a copy of the process environment without interpreter-specific variables."""

    env = dict(os.environ)
    for key in _SANITIZED_VARS:
        env.pop(key, None)
    if additional:
        env.update(additional)
    return env


def session_environment(session: SessionInstance, session_dir: Path) -> dict[str, str]:
    """Environment handed to the agent so it can find its session artifacts."""

    return sanitize_environment(
        {
            "CONCLAVE_SESSION_ID": session.id,
            "CONCLAVE_PROJECT": session.project,
            "CONCLAVE_TASK_KIND": session.task.kind.value,
            "CONCLAVE_SESSION_DIR": str(session_dir),
            "CONCLAVE_CONTEXT_FILE": str(session_dir / "context.md"),
        }
    )


__all__ = ["sanitize_environment", "session_environment"]
