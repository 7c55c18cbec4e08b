"""Project definitions for a multi-project workspace."""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, Field, field_validator


class ProjectDefinition(BaseModel):
    """One project in the workspace and what it depends on."""

    name: str = Field(..., description="Unique project identifier, e.g. '@acme/editor-core'.")
    path: str | None = Field(default=None, description="Location relative to the workspace root.")
    description: str = Field(default="", description="Short summary shown in session briefs.")
    dependencies: list[str] = Field(
        default_factory=list,
        description="Other workspace projects this project imports from.",
    )
    conventions: list[str] = Field(
        default_factory=list,
        description="Coding conventions a session working here should follow.",
    )
    tags: list[str] = Field(
        default_factory=list,
        description="Keywords used to match features to projects.",
    )
    metadata: dict[str, Any] = Field(default_factory=dict)

    @field_validator("name")
    @classmethod
    def _normalize_name(cls, value: str) -> str:
        normalized = value.strip()
        if not normalized:
            raise ValueError("Project name must not be empty")
        return normalized

    @field_validator("dependencies", "conventions", "tags", mode="before")
    @classmethod
    def _ensure_list(cls, value: Any):
        if value is None:
            return []
        if isinstance(value, (list, tuple)):
            return list(value)
        raise TypeError("Dependencies, conventions and tags must be sequences of strings")


def build_dependency_graph(projects: dict[str, ProjectDefinition]) -> dict[str, list[str]]:
    """Map each project to its declared dependencies that exist in the workspace."""

    return {
        name: [dependency for dependency in project.dependencies if dependency in projects]
        for name, project in projects.items()
    }


__all__ = ["ProjectDefinition", "build_dependency_graph"]
