"""Conclave: project-scoped agent sessions with accumulated workspace knowledge."""

__version__ = "0.1.0"

__all__ = ["__version__"]
