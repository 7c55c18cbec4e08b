from __future__ import annotations

import asyncio
from pathlib import Path

import pytest

from conclave.config import ConclaveSettings
from conclave.server import create_server
from conclave.sessions import SessionAdmissionError

from fake_agents import FakeAgentLauncher


class StubEventStore:
    instances: list["StubEventStore"] = []

    def __init__(self, path, *_, **__):  # type: ignore[no-untyped-def]
        self.path = path
        self.transitions: list[dict[str, object]] = []
        StubEventStore.instances.append(self)

    def ping(self) -> bool:
        return True

    def record_transition(self, **kwargs):  # type: ignore[no-untyped-def]
        self.transitions.append(kwargs)


def make_settings(tmp_path: Path) -> ConclaveSettings:
    projects_dir = tmp_path / "projects"
    projects_dir.mkdir()
    (projects_dir / "workspace.yml").write_text(
        "projects:\n"
        "  - name: '@acme/api'\n"
        "  - name: '@acme/ui'\n"
        "    dependencies: ['@acme/api']\n",
        encoding="utf-8",
    )
    settings = ConclaveSettings()
    settings.storage_path = tmp_path / "state"
    settings.workspace_root = tmp_path
    settings.project_paths = (projects_dir,)
    settings.events_enabled = False
    return settings


def test_create_server_wires_components(tmp_path: Path) -> None:
    launcher = FakeAgentLauncher(auto_exit_after=0.01)
    server = create_server(make_settings(tmp_path), launcher=launcher)

    assert server.orchestrator.dependency_graph == {"@acme/api": [], "@acme/ui": ["@acme/api"]}
    assert server.agent_metadata["available"] is True
    assert server.event_metadata["available"] is False

    async def scenario():  # type: ignore[no-untyped-def]
        started = await server.tool_handles.request_session.fn("api", "Add endpoint")
        await asyncio.sleep(0.05)
        return started

    started = asyncio.run(scenario())

    assert started["project"] == "@acme/api"
    assert server.knowledge_store.collection("@acme/api").history.total_session_count == 1
    assert server.memory_store.get_or_create("@acme/api").recent_handoffs[0].session_id == started["session_id"]


def test_missing_agent_leaves_server_usable(tmp_path: Path) -> None:
    settings = make_settings(tmp_path)
    settings.agent_path = str(tmp_path / "missing-agent")

    server = create_server(settings)

    assert server.agent_metadata["available"] is False
    assert "not found" in server.agent_metadata["error"]
    with pytest.raises(SessionAdmissionError):
        asyncio.run(server.tool_handles.request_session.fn("api", "Add endpoint"))
    assert server.pool.active_count == 0


def test_agent_version_is_recorded(tmp_path: Path) -> None:
    script = tmp_path / "agent"
    script.write_text("#!/bin/sh\necho 'agent 9.9.9'\n", encoding="utf-8")
    script.chmod(0o755)
    settings = make_settings(tmp_path)
    settings.agent_path = str(script)

    server = create_server(settings)

    assert server.agent_metadata["available"] is True
    assert server.agent_metadata["version"] == "agent 9.9.9"
    assert server.agent_metadata["path"] == str(script)


def test_event_store_is_attached_when_enabled(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    StubEventStore.instances.clear()
    monkeypatch.setattr("conclave.server.SessionEventStore", StubEventStore)
    settings = make_settings(tmp_path)
    settings.events_enabled = True

    server = create_server(settings, launcher=FakeAgentLauncher())

    assert server.event_metadata["available"] is True
    assert StubEventStore.instances[0].path == settings.storage_path / "events"

    async def scenario() -> None:
        started = await server.tool_handles.request_session.fn("ui", "Render badge")
        await server.pool.terminate_session(started["session_id"])

    asyncio.run(scenario())

    assert [item["status"] for item in StubEventStore.instances[0].transitions] == ["active", "completed"]


def test_broken_project_catalog_is_reported(tmp_path: Path, caplog: pytest.LogCaptureFixture) -> None:
    settings = make_settings(tmp_path)
    (settings.project_paths[0] / "broken.yml").write_text("projects: [\n", encoding="utf-8")
    caplog.set_level("ERROR", logger="conclave.server")

    server = create_server(settings, launcher=FakeAgentLauncher())

    assert server.orchestrator.dependency_graph == {}
    assert any("Failed to load project catalog" in record.message for record in caplog.records)
