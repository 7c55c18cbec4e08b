from __future__ import annotations

import os
from pathlib import Path

import pytest
from pydantic import ValidationError

from conclave.config import ConclaveSettings, get_settings


def test_settings_read_environment(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    monkeypatch.setenv("CONCLAVE_MAX_CONCURRENCY", "3")
    monkeypatch.setenv("CONCLAVE_AGENT_ARGS", "--print --verbose")
    monkeypatch.setenv("CONCLAVE_PROJECT_PATHS", f"{tmp_path / 'a'}{os.pathsep}{tmp_path / 'b'}")
    monkeypatch.setenv("CONCLAVE_LOG_LEVEL", "debug")
    monkeypatch.setenv("CONCLAVE_EVENTS_ENABLED", "true")

    settings = ConclaveSettings()

    assert settings.max_concurrency == 3
    assert settings.agent_args == ("--print", "--verbose")
    assert settings.project_paths == (tmp_path / "a", tmp_path / "b")
    assert settings.log_level == "DEBUG"
    assert settings.events_enabled is True


def test_settings_defaults(monkeypatch: pytest.MonkeyPatch) -> None:
    for name in ("CONCLAVE_MAX_CONCURRENCY", "CONCLAVE_AGENT_ARGS", "CONCLAVE_PROJECT_PATHS"):
        monkeypatch.delenv(name, raising=False)

    settings = ConclaveSettings()

    assert settings.max_concurrency == 5
    assert settings.agent_args == ()
    assert settings.project_paths == (Path("projects"),)
    assert settings.phase_timeout == 900.0


@pytest.mark.parametrize(
    ("name", "value"),
    [
        ("CONCLAVE_MAX_CONCURRENCY", "0"),
        ("CONCLAVE_PHASE_POLL_INTERVAL", "0"),
        ("CONCLAVE_LOG_LEVEL", "chatty"),
    ],
)
def test_settings_reject_invalid_values(monkeypatch: pytest.MonkeyPatch, name: str, value: str) -> None:
    monkeypatch.setenv(name, value)

    with pytest.raises(ValidationError):
        ConclaveSettings()


def test_get_settings_resolves_paths(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    monkeypatch.setenv("CONCLAVE_STORAGE_PATH", str(tmp_path / "state"))
    get_settings.cache_clear()
    try:
        settings = get_settings()
    finally:
        get_settings.cache_clear()

    assert settings.storage_path == (tmp_path / "state").resolve()
    assert settings.storage_path.is_absolute()
