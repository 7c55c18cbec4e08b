from __future__ import annotations

import asyncio
import os
import signal
from datetime import datetime, timezone
from pathlib import Path

import pytest

from conclave.knowledge import KnowledgeStore
from conclave.memory import WorkingMemoryStore
from conclave.orchestration import FeatureOrchestrator, FeatureRequest, Strategy
from conclave.sessions.models import SessionInstance, SessionStatus, TaskDescriptor, TaskKind
from conclave.sessions.pool import SessionAdmissionError
from conclave.workspace import ContextProvider, ProjectDefinition


class StubPool:
    """Records the active set at each request and finishes sessions after ``lifetime`` seconds."""

    def __init__(self, lifetime: float | None = 0.02, fail_projects: set[str] | None = None) -> None:
        self.lifetime = lifetime
        self.fail_projects = fail_projects or set()
        self.active: dict[str, SessionInstance] = {}
        self.requests: list[tuple[str, set[str]]] = []
        self.tasks: list[TaskDescriptor] = []
        self.terminated: list[str] = []

    async def request_session(self, project, task, context=None):  # type: ignore[no-untyped-def]
        self.requests.append((project, {session.project for session in self.active.values()}))
        self.tasks.append(task)
        if project in self.fail_projects:
            raise SessionAdmissionError(f"Could not start {project}")
        session = SessionInstance(
            id=f"{project}-{len(self.requests)}",
            project=project,
            task=task,
            context=context,
            started_at=datetime.now(timezone.utc),
            status=SessionStatus.ACTIVE,
        )
        self.active[session.id] = session
        if self.lifetime is not None:
            asyncio.get_running_loop().call_later(self.lifetime, self._finish, session.id)
        return session

    def _finish(self, session_id: str) -> None:
        session = self.active.pop(session_id, None)
        if session is not None:
            session.transition(SessionStatus.COMPLETED)

    def is_active(self, session_id: str) -> bool:
        return session_id in self.active

    async def terminate_session(self, session_id: str) -> SessionInstance:
        session = self.active.pop(session_id)
        session.transition(SessionStatus.FAILED)
        self.terminated.append(session_id)
        return session


def make_contexts(tmp_path: Path, *definitions: ProjectDefinition) -> ContextProvider:
    projects = {definition.name: definition for definition in definitions}
    return ContextProvider(projects, KnowledgeStore(tmp_path), WorkingMemoryStore(tmp_path))


def make_orchestrator(tmp_path: Path, pool: StubPool, **kwargs) -> FeatureOrchestrator:  # type: ignore[no-untyped-def]
    contexts = make_contexts(
        tmp_path,
        ProjectDefinition(name="@acme/api", tags=["backend"]),
        ProjectDefinition(name="@acme/ui", dependencies=["@acme/api"], tags=["frontend"]),
        ProjectDefinition(name="@acme/shared-types"),
    )
    kwargs.setdefault("poll_interval", 0.01)
    kwargs.setdefault("phase_timeout", 2.0)
    return FeatureOrchestrator(pool, contexts, **kwargs)  # type: ignore[arg-type]


def test_dependent_phase_waits_for_previous_phase(tmp_path: Path) -> None:
    pool = StubPool()
    orchestrator = make_orchestrator(tmp_path, pool)

    plan, result = asyncio.run(orchestrator.orchestrate(FeatureRequest(feature="login", projects=("api", "ui"))))

    assert [phase.projects for phase in plan.phases] == [("@acme/api",), ("@acme/ui",)]
    assert pool.requests == [("@acme/api", set()), ("@acme/ui", set())]
    assert result.success is True
    assert result.sessions_per_project == {"@acme/api": 1, "@acme/ui": 1}


def test_tasks_describe_feature_and_dependencies(tmp_path: Path) -> None:
    pool = StubPool()
    orchestrator = make_orchestrator(tmp_path, pool)

    asyncio.run(orchestrator.orchestrate(FeatureRequest(feature="login", projects=("api", "ui"), priority=70)))

    ui_task = pool.tasks[1]
    assert ui_task.kind is TaskKind.FEATURE
    assert ui_task.description == "Implement login for @acme/ui"
    assert ui_task.cross_project_dependencies == ("@acme/api",)
    assert ui_task.base_priority == 70


def test_parallel_phase_requests_together_and_waits_at_end(tmp_path: Path) -> None:
    pool = StubPool()
    orchestrator = make_orchestrator(tmp_path, pool)
    request = FeatureRequest(
        feature="theme",
        projects=("api", "shared-types"),
        strategy=Strategy.PARALLEL,
        max_sessions=2,
    )

    plan, result = asyncio.run(orchestrator.orchestrate(request))

    assert [phase.projects for phase in plan.phases] == [("@acme/api", "@acme/shared-types")]
    assert pool.requests[1] == ("@acme/shared-types", {"@acme/api"})
    assert result.success is True
    assert pool.active == {}


def test_phase_timeout_fails_and_cleans_up(tmp_path: Path) -> None:
    pool = StubPool(lifetime=None)
    orchestrator = make_orchestrator(tmp_path, pool, phase_timeout=0.05)

    _, result = asyncio.run(orchestrator.orchestrate(FeatureRequest(feature="login", projects=("api", "ui"))))

    assert result.success is False
    assert "phase 1" in (result.error or "")
    assert pool.terminated == ["@acme/api-1"]
    assert [project for project, _ in pool.requests] == ["@acme/api"]


def test_admission_failure_terminates_started_sessions(tmp_path: Path) -> None:
    pool = StubPool(lifetime=None, fail_projects={"@acme/shared-types"})
    orchestrator = make_orchestrator(tmp_path, pool)
    request = FeatureRequest(feature="x", projects=("api", "shared-types"), strategy=Strategy.PARALLEL)

    _, result = asyncio.run(orchestrator.orchestrate(request))

    assert result.success is False
    assert "Could not start" in (result.error or "")
    assert pool.terminated == ["@acme/api-1"]


def test_cancel_interrupts_wait(tmp_path: Path) -> None:
    pool = StubPool(lifetime=None)
    orchestrator = make_orchestrator(tmp_path, pool, poll_interval=5.0, phase_timeout=30.0)

    async def scenario():  # type: ignore[no-untyped-def]
        asyncio.get_running_loop().call_later(0.05, orchestrator.cancel)
        return await orchestrator.orchestrate(FeatureRequest(feature="login", projects=("api", "ui")))

    _, result = asyncio.run(scenario())

    assert result.success is False
    assert "cancelled" in (result.error or "")
    assert pool.terminated == ["@acme/api-1"]
    assert orchestrator.cancelled is True

    orchestrator.reset()
    assert orchestrator.cancelled is False


def test_analyze_scope_detects_projects_and_dependencies(tmp_path: Path) -> None:
    orchestrator = make_orchestrator(tmp_path, StubPool())

    scope = orchestrator.analyze_scope("Add dark mode to the frontend")

    assert scope.primary_projects == ("@acme/ui",)
    assert scope.secondary_projects == ("@acme/api",)
    assert scope.coordination_required is False


def test_analyze_scope_skips_unknown_explicit_projects(tmp_path: Path) -> None:
    orchestrator = make_orchestrator(tmp_path, StubPool())

    scope = orchestrator.analyze_scope("anything", ["api", "billing"])

    assert scope.primary_projects == ("@acme/api",)
    assert scope.estimated_session_count == 1


def test_analyze_scope_falls_back_to_first_projects(tmp_path: Path) -> None:
    orchestrator = make_orchestrator(tmp_path, StubPool())

    scope = orchestrator.analyze_scope("something unrelated")

    assert scope.primary_projects == ("@acme/api", "@acme/ui")
    assert scope.coordination_required is True


def test_dependency_graph_is_copied(tmp_path: Path) -> None:
    orchestrator = make_orchestrator(tmp_path, StubPool())

    graph = orchestrator.dependency_graph
    graph["@acme/ui"].append("bogus")

    assert orchestrator.dependency_graph["@acme/ui"] == ["@acme/api"]


@pytest.mark.parametrize("strategy", list(Strategy))
def test_every_strategy_runs_one_session_per_project(tmp_path: Path, strategy: Strategy) -> None:
    pool = StubPool()
    orchestrator = make_orchestrator(tmp_path, pool)
    request = FeatureRequest(feature="f", projects=("api", "ui", "shared-types"), strategy=strategy, max_sessions=2)

    _, result = asyncio.run(orchestrator.orchestrate(request))

    assert result.success is True
    assert sorted(result.sessions_per_project.values()) == [1, 1, 1]


def test_unexpected_error_still_cleans_up(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    pool = StubPool(lifetime=None)
    orchestrator = make_orchestrator(tmp_path, pool)
    load_context = ContextProvider.load_context

    def failing_load(self, project):  # type: ignore[no-untyped-def]
        if project == "@acme/shared-types":
            raise OSError("disk went away")
        return load_context(self, project)

    monkeypatch.setattr(ContextProvider, "load_context", failing_load)
    request = FeatureRequest(feature="x", projects=("api", "shared-types"), strategy=Strategy.PARALLEL)

    _, result = asyncio.run(orchestrator.orchestrate(request))

    assert result.success is False
    assert result.error == "disk went away"
    assert pool.terminated == ["@acme/api-1"]
    assert pool.active == {}


def test_task_cancellation_cleans_up_and_propagates(tmp_path: Path) -> None:
    pool = StubPool(lifetime=None)
    orchestrator = make_orchestrator(tmp_path, pool, poll_interval=5.0, phase_timeout=30.0)

    async def scenario() -> None:
        run = asyncio.create_task(orchestrator.orchestrate(FeatureRequest(feature="login", projects=("api", "ui"))))
        await asyncio.sleep(0.05)
        run.cancel()
        await run

    with pytest.raises(asyncio.CancelledError):
        asyncio.run(scenario())

    assert pool.terminated == ["@acme/api-1"]


def test_sigterm_during_execute_cancels_and_restores_handler(tmp_path: Path) -> None:
    pool = StubPool(lifetime=None)
    orchestrator = make_orchestrator(tmp_path, pool, poll_interval=5.0, phase_timeout=30.0)
    original = signal.getsignal(signal.SIGTERM)

    async def scenario():  # type: ignore[no-untyped-def]
        asyncio.get_running_loop().call_later(0.05, os.kill, os.getpid(), signal.SIGTERM)
        return await orchestrator.orchestrate(FeatureRequest(feature="login", projects=("api", "ui")))

    _, result = asyncio.run(scenario())

    assert result.success is False
    assert "cancelled" in (result.error or "")
    assert pool.terminated == ["@acme/api-1"]
    assert signal.getsignal(signal.SIGTERM) is original


def test_new_run_clears_earlier_cancellation(tmp_path: Path) -> None:
    pool = StubPool()
    orchestrator = make_orchestrator(tmp_path, pool)
    orchestrator.cancel()

    _, result = asyncio.run(orchestrator.orchestrate(FeatureRequest(feature="login", projects=("api", "ui"))))

    assert result.success is True
    assert orchestrator.cancelled is False
