"""Project catalog and session context assembly."""

from .context import ContextProvider, SessionContext
from .loader import ProjectLoadError, ProjectLoader, load_projects
from .models import ProjectDefinition, build_dependency_graph

__all__ = [
    "ContextProvider",
    "ProjectDefinition",
    "ProjectLoadError",
    "ProjectLoader",
    "SessionContext",
    "build_dependency_graph",
    "load_projects",
]
