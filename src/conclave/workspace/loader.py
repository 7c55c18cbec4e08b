"""Project catalog loading from YAML files."""

from __future__ import annotations

from pathlib import Path
from typing import Any, Iterable

import yaml
from pydantic import ValidationError

from .models import ProjectDefinition


class ProjectLoadError(RuntimeError):
    """Raised when one or more project files cannot be parsed."""


class ProjectLoader:
    """Loads project definitions from YAML files on disk.

    A file holds either a single project mapping or a ``projects:`` list.
    """

    def __init__(self, search_paths: Iterable[Path] | None = None) -> None:
        paths = [Path(path) for path in (search_paths or [])]
        self._search_paths: list[Path] = [path for path in paths if path.exists()]

    @property
    def search_paths(self) -> list[Path]:
        return list(self._search_paths)

    def load_all(self) -> dict[str, ProjectDefinition]:
        """Load projects from all configured search paths.

        Later search paths override earlier ones when project names collide.
        """

        projects: dict[str, ProjectDefinition] = {}
        errors: list[str] = []

        for base in self._search_paths:
            files = [base] if base.is_file() else sorted(base.glob("*.yml")) + sorted(base.glob("*.yaml"))
            for path in files:
                try:
                    document = yaml.safe_load(path.read_text(encoding="utf-8"))
                except yaml.YAMLError as exc:
                    errors.append(f"Failed to parse YAML in {path}: {exc}")
                    continue

                for entry in _entries(document):
                    try:
                        project = ProjectDefinition.model_validate(entry)
                    except ValidationError as exc:
                        errors.append(f"Project validation error in {path}: {exc}")
                        continue
                    projects[project.name] = project

        if errors:
            raise ProjectLoadError("; ".join(errors))

        return projects

    def get(self, name: str) -> ProjectDefinition:
        projects = self.load_all()
        try:
            return projects[name]
        except KeyError as exc:
            raise ProjectLoadError(f"Project '{name}' not found in search paths") from exc


def _entries(document: Any) -> list[Any]:
    if document is None:
        return []
    if isinstance(document, dict) and "projects" in document:
        return list(document["projects"] or [])
    if isinstance(document, list):
        return document
    return [document]


def load_projects(search_paths: Iterable[Path] | None = None) -> dict[str, ProjectDefinition]:
    """Convenience wrapper for loading projects from the provided paths."""

    return ProjectLoader(search_paths).load_all()


__all__ = ["ProjectLoadError", "ProjectLoader", "load_projects"]
