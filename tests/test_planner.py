from __future__ import annotations

import pytest

from conclave.orchestration import FeatureRequest, FeatureScope, Strategy
from conclave.orchestration.planner import (
    DEPENDENCY_AWARE_PHASE_SECONDS,
    PARALLEL_PHASE_SECONDS,
    SEQUENTIAL_PHASE_SECONDS,
    coordination_points,
    create_plan,
    dependency_aware_phases,
    estimate_total_duration,
    parallel_phases,
    restrict_graph,
    sequential_phases,
)


def test_restrict_graph_drops_outside_dependencies() -> None:
    graph = {"api": ["shared", "vendor"], "ui": ["api"]}

    assert restrict_graph(["api", "ui"], graph) == {"api": [], "ui": ["api"]}


def test_chain_runs_one_phase_per_project() -> None:
    graph = {"a": [], "b": ["a"], "c": ["b"]}

    phases = dependency_aware_phases(["a", "b", "c"], graph, max_sessions=2)

    assert [phase.projects for phase in phases] == [("a",), ("b",), ("c",)]
    assert [phase.dependencies for phase in phases] == [(), ("a",), ("b",)]
    assert not any(phase.parallelizable for phase in phases)
    assert all(phase.estimated_duration == DEPENDENCY_AWARE_PHASE_SECONDS for phase in phases)


def test_independent_projects_share_phases_up_to_limit() -> None:
    phases = dependency_aware_phases(["a", "b", "c"], {}, max_sessions=2)

    assert [phase.projects for phase in phases] == [("a", "b"), ("c",)]
    assert phases[0].parallelizable is True
    assert phases[1].parallelizable is False
    assert [phase.index for phase in phases] == [1, 2]


def test_cycle_forces_progress() -> None:
    graph = {"a": ["b"], "b": ["a"], "c": []}

    phases = dependency_aware_phases(["a", "b", "c"], graph, max_sessions=1)

    assert [phase.projects for phase in phases] == [("c",), ("a",), ("b",)]


def test_cycle_assigns_every_project_once() -> None:
    graph = {"a": ["c"], "b": ["a"], "c": ["b"]}

    phases = dependency_aware_phases(["a", "b", "c"], graph, max_sessions=2)

    scheduled = [name for phase in phases for name in phase.projects]
    assert sorted(scheduled) == ["a", "b", "c"]
    assert phases[0].projects == ("a", "b")


def test_sequential_phases_chain_in_list_order() -> None:
    phases = sequential_phases(["x", "y", "z"])

    assert [phase.projects for phase in phases] == [("x",), ("y",), ("z",)]
    assert [phase.dependencies for phase in phases] == [(), ("x",), ("y",)]
    assert estimate_total_duration(phases) == 3 * SEQUENTIAL_PHASE_SECONDS


def test_parallel_phases_chunk_by_max_sessions() -> None:
    phases = parallel_phases(["a", "b", "c", "d", "e"], max_sessions=2)

    assert [phase.projects for phase in phases] == [("a", "b"), ("c", "d"), ("e",)]
    assert all(phase.parallelizable for phase in phases)
    assert estimate_total_duration(phases) == PARALLEL_PHASE_SECONDS


def test_coordination_points_only_for_multi_project_phases() -> None:
    phases = dependency_aware_phases(["a", "b", "c"], {"c": ["a"]}, max_sessions=3)

    points = coordination_points(phases)

    assert [(point.phase, point.kind, point.trigger) for point in points] == [
        (1, "sync", "phase-start"),
        (1, "async", "interface-change"),
    ]
    assert points[0].actions == ("share-context", "coordinate-interfaces")
    assert points[1].actions == ("notify-dependents", "validate-compatibility")


def test_create_plan_mixed_duration_and_concurrency() -> None:
    request = FeatureRequest(feature="auth", max_sessions=2)
    scope = FeatureScope(primary_projects=("api", "ui"), secondary_projects=("shared",))
    graph = {"api": ["shared"], "ui": ["shared"], "shared": []}

    plan = create_plan(request, scope, graph)

    assert [phase.projects for phase in plan.phases] == [("shared",), ("api", "ui")]
    assert plan.total_estimated_duration == 2 * DEPENDENCY_AWARE_PHASE_SECONDS
    assert plan.concurrency_map == {"shared": 1, "api": 2, "ui": 2}
    assert len(plan.coordination_points) == 2


def test_create_plan_honours_strategy() -> None:
    scope = FeatureScope(primary_projects=("a", "b", "c"))

    sequential = create_plan(FeatureRequest(feature="f", strategy=Strategy.SEQUENTIAL), scope, {})
    parallel = create_plan(FeatureRequest(feature="f", strategy=Strategy.PARALLEL, max_sessions=3), scope, {})

    assert len(sequential.phases) == 3
    assert [phase.projects for phase in parallel.phases] == [("a", "b", "c")]


def test_feature_request_rejects_zero_sessions() -> None:
    with pytest.raises(ValueError):
        FeatureRequest(feature="f", max_sessions=0)
