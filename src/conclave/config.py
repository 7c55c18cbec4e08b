"""Configuration management for Conclave."""

from __future__ import annotations

from functools import lru_cache
from pathlib import Path
from typing import Annotated
import os
import shlex

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, NoDecode, SettingsConfigDict


class ConclaveSettings(BaseSettings):
    """Runtime configuration sourced from environment variables and optional .env file."""

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    agent_path: str | None = Field(default=None, validation_alias="CONCLAVE_AGENT_PATH")
    agent_args: Annotated[tuple[str, ...], NoDecode] = Field(
        default=(), validation_alias="CONCLAVE_AGENT_ARGS"
    )
    workspace_root: Path = Field(default=Path("."), validation_alias="CONCLAVE_WORKSPACE_ROOT")
    storage_path: Path = Field(default=Path("./.conclave"), validation_alias="CONCLAVE_STORAGE_PATH")
    project_paths: Annotated[tuple[Path, ...], NoDecode] = Field(
        default=(Path("projects"),), validation_alias="CONCLAVE_PROJECT_PATHS"
    )
    max_concurrency: int = Field(default=5, validation_alias="CONCLAVE_MAX_CONCURRENCY")
    phase_poll_interval: float = Field(default=2.0, validation_alias="CONCLAVE_PHASE_POLL_INTERVAL")
    phase_timeout: float = Field(default=900.0, validation_alias="CONCLAVE_PHASE_TIMEOUT")
    memory_max_age_hours: float = Field(default=72.0, validation_alias="CONCLAVE_MEMORY_MAX_AGE_HOURS")
    keep_recent_sessions: int = Field(default=10, validation_alias="CONCLAVE_KEEP_RECENT_SESSIONS")
    events_enabled: bool = Field(default=False, validation_alias="CONCLAVE_EVENTS_ENABLED")
    log_level: str = Field(default="INFO", validation_alias="CONCLAVE_LOG_LEVEL")

    @field_validator("log_level")
    @classmethod
    def _normalize_log_level(cls, value: str) -> str:
        normalized = value.strip().upper()
        if normalized not in {"CRITICAL", "ERROR", "WARNING", "INFO", "DEBUG"}:
            raise ValueError(
                "CONCLAVE_LOG_LEVEL must be one of CRITICAL, ERROR, WARNING, INFO, DEBUG"
            )
        return normalized

    @field_validator("project_paths", mode="before")
    @classmethod
    def _parse_project_paths(cls, value):
        if value is None or value == "":
            return (Path("projects"),)
        if isinstance(value, (list, tuple)):
            return tuple(Path(str(item)) for item in value)
        if isinstance(value, str):
            parts = [part.strip() for part in value.split(os.pathsep) if part.strip()]
            return tuple(Path(part) for part in parts) or (Path("projects"),)
        raise TypeError("CONCLAVE_PROJECT_PATHS must be a list of paths or a path-separated string")

    @field_validator("agent_args", mode="before")
    @classmethod
    def _parse_agent_args(cls, value):
        if value is None or value == "":
            return ()
        if isinstance(value, str):
            return tuple(shlex.split(value))
        if isinstance(value, (list, tuple)):
            return tuple(str(item) for item in value)
        raise TypeError("CONCLAVE_AGENT_ARGS must be a string or a list of arguments")

    @field_validator("max_concurrency", "keep_recent_sessions")
    @classmethod
    def _validate_positive(cls, value: int) -> int:
        if value < 1:
            raise ValueError("Concurrency and retention limits must be >= 1")
        return value

    @field_validator("phase_poll_interval", "phase_timeout")
    @classmethod
    def _validate_timing(cls, value: float) -> float:
        if value <= 0:
            raise ValueError("Phase polling interval and timeout must be positive")
        return value


@lru_cache(maxsize=1)
def get_settings() -> ConclaveSettings:
    """Return cached settings instance."""

    settings = ConclaveSettings()
    settings.workspace_root = settings.workspace_root.expanduser().resolve()
    settings.storage_path = settings.storage_path.expanduser().resolve()
    settings.project_paths = tuple(path.expanduser().resolve() for path in settings.project_paths)
    return settings


__all__ = ["ConclaveSettings", "get_settings"]
