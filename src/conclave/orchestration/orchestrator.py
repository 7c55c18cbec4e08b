"""Drive multi-project features through the session pool phase by phase."""

from __future__ import annotations

import asyncio
import logging
import signal
import time
from contextlib import contextmanager
from typing import Iterable, Iterator, Sequence

from ..sessions.models import Complexity, SessionInstance, TaskDescriptor, TaskKind
from ..sessions.pool import SessionPool, SessionPoolError
from ..workspace.context import ContextProvider
from ..workspace.models import build_dependency_graph
from .models import FeatureRequest, FeatureScope, OrchestrationPlan, OrchestrationResult
from .planner import create_plan
from .waiting import WaitCancelledError, WaitTimeoutError, wait_for_condition

logger = logging.getLogger(__name__)


class OrchestrationError(RuntimeError):
    """Base class for orchestration failures."""


class PhaseTimeoutError(OrchestrationError):
    """Raised when a phase's sessions do not finish before the ceiling."""


class OrchestrationCancelledError(OrchestrationError):
    """Raised when a running orchestration is cancelled."""


_SHARED_MARKERS = ("shared", "common")


class FeatureOrchestrator:
    """Plans a feature across projects and runs the plan against a ``SessionPool``."""

    def __init__(
        self,
        pool: SessionPool,
        contexts: ContextProvider,
        *,
        poll_interval: float = 2.0,
        phase_timeout: float = 900.0,
    ) -> None:
        self._pool = pool
        self._contexts = contexts
        self._poll_interval = poll_interval
        self._phase_timeout = phase_timeout
        self._cancel_event = asyncio.Event()
        self._graph = build_dependency_graph(contexts.projects)

    @property
    def dependency_graph(self) -> dict[str, list[str]]:
        return {name: list(deps) for name, deps in self._graph.items()}

    @property
    def cancelled(self) -> bool:
        return self._cancel_event.is_set()

    def analyze_scope(self, feature: str, projects: Sequence[str] | None = None) -> FeatureScope:
        """Work out which projects a feature touches.

        Explicit project names are validated against the catalog; otherwise the
        feature text is matched against project names and tags.
        """

        catalog = self._contexts.projects
        if projects:
            resolved = [self._contexts.resolve(name) for name in projects]
            primary = [name for name in dict.fromkeys(resolved) if name in catalog]
            skipped = [name for name in resolved if name not in catalog]
            if skipped:
                logger.warning("Skipping unknown projects", extra={"projects": skipped})
        else:
            text = feature.lower()
            primary = [
                name
                for name, definition in catalog.items()
                if name.rsplit("/", 1)[-1].lower() in text
                or any(tag.lower() in text for tag in definition.tags)
            ]
            if not primary:
                primary = list(catalog)[:2]
            logger.info("Detected projects for feature", extra={"feature": feature, "projects": primary})

        secondary = [
            dep
            for dep in dict.fromkeys(dep for name in primary for dep in self._graph.get(name, ()))
            if dep not in primary
        ]
        shared = [
            dep
            for dep in dict.fromkeys(dep for name in primary for dep in self._graph.get(name, ()))
            if any(marker in dep for marker in _SHARED_MARKERS)
        ]
        return FeatureScope(
            primary_projects=tuple(primary),
            secondary_projects=tuple(secondary),
            shared_resources=tuple(shared),
        )

    def create_plan(self, request: FeatureRequest, scope: FeatureScope) -> OrchestrationPlan:
        return create_plan(request, scope, self._graph)

    async def execute(self, request: FeatureRequest, plan: OrchestrationPlan) -> OrchestrationResult:
        """Run ``plan``; on failure every session started so far is terminated.

        SIGINT and SIGTERM received while the plan runs cancel it the same way
        ``cancel()`` does.
        """

        self.reset()
        started = time.monotonic()
        sessions: list[SessionInstance] = []

        try:
            with self._signal_handlers():
                await self._run_phases(request, plan, sessions)
        except asyncio.CancelledError:
            await self._cleanup(sessions)
            raise
        except Exception as exc:
            logger.error("Orchestration failed", extra={"feature": request.feature, "error": str(exc)})
            await self._cleanup(sessions)
            return OrchestrationResult(
                success=False,
                sessions=sessions,
                duration=time.monotonic() - started,
                error=str(exc),
            )

        duration = time.monotonic() - started
        logger.info(
            "Orchestration completed",
            extra={"feature": request.feature, "sessions": len(sessions), "duration": duration},
        )
        return OrchestrationResult(success=True, sessions=sessions, duration=duration)

    async def orchestrate(self, request: FeatureRequest) -> tuple[OrchestrationPlan, OrchestrationResult]:
        scope = self.analyze_scope(request.feature, request.projects)
        plan = self.create_plan(request, scope)
        return plan, await self.execute(request, plan)

    def cancel(self) -> None:
        """Stop waiting and fail the running orchestration at its next check."""

        self._cancel_event.set()

    def reset(self) -> None:
        self._cancel_event = asyncio.Event()

    async def _run_phases(
        self,
        request: FeatureRequest,
        plan: OrchestrationPlan,
        sessions: list[SessionInstance],
    ) -> None:
        last_index = len(plan.phases) - 1
        for position, phase in enumerate(plan.phases):
            logger.info(
                "Starting phase",
                extra={"phase": phase.index, "projects": list(phase.projects)},
            )
            phase_sessions: list[SessionInstance] = []
            for project in phase.projects:
                self._raise_if_cancelled()
                task = TaskDescriptor(
                    kind=TaskKind.FEATURE,
                    description=f"Implement {request.feature} for {project}",
                    scope=(project, *(other for other in phase.projects if other != project)),
                    base_priority=request.priority,
                    complexity=Complexity.MEDIUM,
                    cross_project_dependencies=phase.dependencies,
                )
                session = await self._pool.request_session(
                    project, task, self._contexts.load_context(project)
                )
                phase_sessions.append(session)
                sessions.append(session)

            if not phase.parallelizable and position < last_index:
                await self._wait_for_sessions(phase_sessions, f"phase {phase.index}")

        if any(phase.parallelizable for phase in plan.phases):
            await self._wait_for_sessions(sessions, "all sessions")

    @contextmanager
    def _signal_handlers(self) -> Iterator[None]:
        if not hasattr(signal, "SIGTERM"):
            yield
            return

        loop = asyncio.get_running_loop()
        originals: dict[int, object] = {}

        def _handler(signum: int, _: object | None) -> None:
            logger.warning(
                "Received signal, cancelling orchestration",
                extra={"signal": signal.Signals(signum).name},
            )
            loop.call_soon_threadsafe(self.cancel)

        try:
            for signum in (signal.SIGINT, signal.SIGTERM):
                original = signal.getsignal(signum)
                signal.signal(signum, _handler)
                if original is not None:
                    originals[signum] = original
        except ValueError:
            # Handlers can only be installed from the main thread.
            logger.debug("Signal handlers not installed outside the main thread")

        try:
            yield
        finally:
            for signum, original in originals.items():
                signal.signal(signum, original)  # type: ignore[arg-type]

    def _raise_if_cancelled(self) -> None:
        if self._cancel_event.is_set():
            raise OrchestrationCancelledError("Orchestration cancelled")

    async def _wait_for_sessions(self, sessions: Iterable[SessionInstance], description: str) -> None:
        ids = [session.id for session in sessions]
        try:
            await wait_for_condition(
                lambda: not any(self._pool.is_active(session_id) for session_id in ids),
                interval=self._poll_interval,
                timeout=self._phase_timeout,
                cancel_event=self._cancel_event,
                description=description,
            )
        except WaitTimeoutError as exc:
            raise PhaseTimeoutError(str(exc)) from exc
        except WaitCancelledError as exc:
            raise OrchestrationCancelledError(str(exc)) from exc

    async def _cleanup(self, sessions: Iterable[SessionInstance]) -> None:
        for session in sessions:
            if not self._pool.is_active(session.id):
                continue
            try:
                await self._pool.terminate_session(session.id)
            except SessionPoolError as exc:
                logger.warning(
                    "Could not clean up session",
                    extra={"session_id": session.id, "error": str(exc)},
                )


__all__ = [
    "FeatureOrchestrator",
    "OrchestrationCancelledError",
    "OrchestrationError",
    "PhaseTimeoutError",
]
