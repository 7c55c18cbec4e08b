"""JSON document persistence shared by the memory and knowledge stores."""

from __future__ import annotations

import json
import logging
import os
import re
from pathlib import Path
from typing import Any

logger = logging.getLogger(__name__)

_SEPARATORS = re.compile(r"[^A-Za-z0-9]+")


def project_key(project: str) -> str:
    """Return a filesystem-safe key for a project name.

    ``@acme/editor-core`` becomes ``acme-editor-core``.
    """

    key = _SEPARATORS.sub("-", project).strip("-").lower()
    return key or "unnamed"


class DocumentStore:
    """Reads and writes JSON documents beneath a root directory.

    Write failures are logged and reported through the return value; callers keep
    their in-memory copy as the authoritative state.
    """

    def __init__(self, root: Path) -> None:
        self._root = Path(root)

    @property
    def root(self) -> Path:
        return self._root

    def path_for(self, *parts: str) -> Path:
        return self._root.joinpath(*parts)

    def read(self, path: Path) -> Any | None:
        if not path.exists():
            return None
        try:
            return json.loads(path.read_text(encoding="utf-8"))
        except (OSError, ValueError) as exc:
            logger.warning("Failed to read document", extra={"path": str(path), "error": str(exc)})
            return None

    def write(self, path: Path, payload: Any) -> bool:
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            scratch = path.with_name(f".{path.name}.tmp")
            scratch.write_text(json.dumps(payload, indent=2), encoding="utf-8")
            os.replace(scratch, path)
        except OSError as exc:
            logger.warning("Failed to persist document", extra={"path": str(path), "error": str(exc)})
            return False
        return True


__all__ = ["DocumentStore", "project_key"]
