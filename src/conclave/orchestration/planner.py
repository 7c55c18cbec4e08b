"""Phase planning strategies."""

from __future__ import annotations

import logging
from typing import Mapping, Sequence

from .models import CoordinationPoint, FeatureRequest, FeatureScope, OrchestrationPlan, Phase, Strategy

logger = logging.getLogger(__name__)

DEPENDENCY_AWARE_PHASE_SECONDS = 35 * 60
SEQUENTIAL_PHASE_SECONDS = 30 * 60
PARALLEL_PHASE_SECONDS = 45 * 60


def restrict_graph(projects: Sequence[str], graph: Mapping[str, Sequence[str]]) -> dict[str, list[str]]:
    """Keep only dependencies that are themselves among ``projects``."""

    members = set(projects)
    return {name: [dep for dep in graph.get(name, ()) if dep in members] for name in projects}


def dependency_aware_phases(
    projects: Sequence[str],
    graph: Mapping[str, Sequence[str]],
    max_sessions: int,
) -> list[Phase]:
    """Group projects into phases so each runs after its in-set dependencies.

    When nothing is ready (a cycle), up to ``max_sessions`` unassigned projects
    are taken regardless of their dependencies.
    """

    in_set = restrict_graph(projects, graph)
    assigned: set[str] = set()
    phases: list[Phase] = []

    while len(assigned) < len(projects):
        ready = [
            name
            for name in projects
            if name not in assigned and all(dep in assigned for dep in in_set[name])
        ]
        if not ready:
            ready = [name for name in projects if name not in assigned]
            logger.warning(
                "Dependency cycle detected; forcing progress",
                extra={"projects": ready[:max_sessions]},
            )

        members = tuple(ready[:max_sessions])
        phases.append(
            Phase(
                index=len(phases) + 1,
                projects=members,
                parallelizable=len(members) > 1,
                dependencies=tuple(dep for name in members for dep in in_set[name]),
                estimated_duration=DEPENDENCY_AWARE_PHASE_SECONDS,
            )
        )
        assigned.update(members)

    return phases


def sequential_phases(projects: Sequence[str]) -> list[Phase]:
    """One project per phase, each chained to the project listed before it."""

    return [
        Phase(
            index=position + 1,
            projects=(name,),
            parallelizable=False,
            dependencies=(projects[position - 1],) if position > 0 else (),
            estimated_duration=SEQUENTIAL_PHASE_SECONDS,
        )
        for position, name in enumerate(projects)
    ]


def parallel_phases(projects: Sequence[str], max_sessions: int) -> list[Phase]:
    return [
        Phase(
            index=number + 1,
            projects=tuple(projects[start : start + max_sessions]),
            parallelizable=True,
            estimated_duration=PARALLEL_PHASE_SECONDS,
        )
        for number, start in enumerate(range(0, len(projects), max_sessions))
    ]


def coordination_points(phases: Sequence[Phase]) -> list[CoordinationPoint]:
    points: list[CoordinationPoint] = []
    for phase in phases:
        if len(phase.projects) < 2:
            continue
        points.append(
            CoordinationPoint(
                phase=phase.index,
                projects=phase.projects,
                kind="sync",
                trigger="phase-start",
                actions=("share-context", "coordinate-interfaces"),
            )
        )
        points.append(
            CoordinationPoint(
                phase=phase.index,
                projects=phase.projects,
                kind="async",
                trigger="interface-change",
                actions=("notify-dependents", "validate-compatibility"),
            )
        )
    return points


def estimate_total_duration(phases: Sequence[Phase]) -> float:
    """Sequential phases add up; parallel phases contribute only the longest one."""

    sequential = sum(phase.estimated_duration for phase in phases if not phase.parallelizable)
    parallel = max((phase.estimated_duration for phase in phases if phase.parallelizable), default=0.0)
    return sequential + parallel


def concurrency_map(phases: Sequence[Phase], max_sessions: int) -> dict[str, int]:
    return {
        name: max_sessions if phase.parallelizable else 1
        for phase in phases
        for name in phase.projects
    }


def create_plan(
    request: FeatureRequest,
    scope: FeatureScope,
    graph: Mapping[str, Sequence[str]],
) -> OrchestrationPlan:
    projects = list(dict.fromkeys(scope.all_projects))
    strategy = Strategy(request.strategy)

    if strategy is Strategy.SEQUENTIAL:
        phases = sequential_phases(projects)
    elif strategy is Strategy.PARALLEL:
        phases = parallel_phases(projects, request.max_sessions)
    else:
        phases = dependency_aware_phases(projects, graph, request.max_sessions)

    logger.info(
        "Planned feature",
        extra={"feature": request.feature, "strategy": strategy.value, "phases": len(phases)},
    )
    return OrchestrationPlan(
        phases=tuple(phases),
        coordination_points=tuple(coordination_points(phases)),
        total_estimated_duration=estimate_total_duration(phases),
        concurrency_map=concurrency_map(phases, request.max_sessions),
    )


__all__ = [
    "DEPENDENCY_AWARE_PHASE_SECONDS",
    "PARALLEL_PHASE_SECONDS",
    "SEQUENTIAL_PHASE_SECONDS",
    "concurrency_map",
    "coordination_points",
    "create_plan",
    "dependency_aware_phases",
    "estimate_total_duration",
    "parallel_phases",
    "restrict_graph",
    "sequential_phases",
]
