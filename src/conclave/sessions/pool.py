"""Bounded-concurrency admission control for agent sessions."""

from __future__ import annotations

import asyncio
import bisect
import inspect
import itertools
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import TYPE_CHECKING, Any, Awaitable, Callable

from .launcher import AgentExit, Launcher, RunningAgent
from .models import Complexity, SessionInstance, SessionStatus, TaskDescriptor, TaskKind

if TYPE_CHECKING:
    from ..storage.events import SessionEventStore
    from ..workspace.context import SessionContext

logger = logging.getLogger(__name__)


class SessionPoolError(RuntimeError):
    """Base class for session pool errors."""


class SessionAdmissionError(SessionPoolError):
    """Raised when the launcher fails to start a session. Never retried."""


class SessionNotFoundError(SessionPoolError):
    """Raised when an operation targets an unknown or inactive session."""


class PoolShutdownError(SessionPoolError):
    """Raised for requests rejected because the pool is shutting down."""


CompletionListener = Callable[[SessionInstance, AgentExit | None], Awaitable[None] | None]


def calculate_priority(task: TaskDescriptor) -> int:
    """Queue score for a task; higher runs first."""

    priority = task.base_priority
    if task.cross_project_dependencies:
        priority += 10
    if task.complexity is Complexity.HIGH:
        priority += 5
    if task.kind is TaskKind.BUG_FIX:
        priority += 20
    return priority


@dataclass(slots=True)
class QueuedRequest:
    """A waiting session request. Plain data; the caller's future lives in the pool."""

    ticket: int
    project: str
    task: TaskDescriptor
    context: SessionContext | None
    priority: int
    enqueued_at: datetime


class SessionPool:
    """Turns session requests into running sessions, never exceeding ``max_concurrency``.

    All mutation happens on the event loop that drives the pool; no locking is used.
    """

    def __init__(
        self,
        launcher: Launcher,
        *,
        max_concurrency: int = 5,
        event_store: SessionEventStore | None = None,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        if max_concurrency < 1:
            raise ValueError("max_concurrency must be >= 1")
        self._launcher = launcher
        self._max_concurrency = max_concurrency
        self._event_store = event_store
        self._clock = clock or (lambda: datetime.now(timezone.utc))

        self._active: dict[str, SessionInstance] = {}
        self._agents: dict[str, RunningAgent] = {}
        self._watchers: dict[str, asyncio.Task[None]] = {}
        self._queue: list[QueuedRequest] = []
        self._waiters: dict[int, asyncio.Future[SessionInstance]] = {}
        self._admissions: set[asyncio.Task[Any]] = set()
        self._listeners: list[CompletionListener] = []
        self._tickets = itertools.count(1)
        self._counter = 0
        self._starting = 0
        self._closed = False

    @property
    def max_concurrency(self) -> int:
        return self._max_concurrency

    @property
    def active_count(self) -> int:
        return len(self._active)

    @property
    def queue_length(self) -> int:
        return len(self._queue)

    @property
    def closed(self) -> bool:
        return self._closed

    def has_available_slot(self) -> bool:
        return len(self._active) + self._starting < self._max_concurrency

    def is_active(self, session_id: str) -> bool:
        return session_id in self._active

    def get_session(self, session_id: str) -> SessionInstance | None:
        return self._active.get(session_id)

    def add_completion_listener(self, listener: CompletionListener) -> None:
        """Register a callback invoked after a session leaves the active set."""

        self._listeners.append(listener)

    async def request_session(
        self,
        project: str,
        task: TaskDescriptor,
        context: SessionContext | None = None,
    ) -> SessionInstance:
        """Start a session now, or wait in the priority queue until a slot frees."""

        if self._closed:
            raise PoolShutdownError("Session pool is shut down")

        if self.has_available_slot():
            return await self._launch(self._reserve(project, task, context))

        request = QueuedRequest(
            ticket=next(self._tickets),
            project=project,
            task=task,
            context=context,
            priority=calculate_priority(task),
            enqueued_at=self._clock(),
        )
        future: asyncio.Future[SessionInstance] = asyncio.get_running_loop().create_future()
        self._waiters[request.ticket] = future
        bisect.insort(self._queue, request, key=lambda item: (-item.priority, item.ticket))
        logger.info(
            "Queued session request",
            extra={"project": project, "priority": request.priority, "queue_length": len(self._queue)},
        )

        try:
            return await future
        except asyncio.CancelledError:
            self._discard(request.ticket)
            raise

    def _discard(self, ticket: int) -> None:
        self._waiters.pop(ticket, None)
        self._queue = [item for item in self._queue if item.ticket != ticket]

    def _reserve(self, project: str, task: TaskDescriptor, context: SessionContext | None) -> SessionInstance:
        self._counter += 1
        now = self._clock()
        self._starting += 1
        return SessionInstance(
            id=f"{project}-{self._counter}-{int(now.timestamp() * 1000)}",
            project=project,
            task=task,
            context=context,
            started_at=now,
        )

    async def _launch(self, session: SessionInstance) -> SessionInstance:
        failure: Exception | None = None
        agent: RunningAgent | None = None
        try:
            agent = await self._launcher.start(session)
        except Exception as exc:
            failure = exc
        finally:
            self._starting -= 1

        if failure is not None:
            session.transition(SessionStatus.FAILED, at=self._clock())
            self._record(session)
            logger.error(
                "Session failed to start",
                extra={"session_id": session.id, "project": session.project, "error": str(failure)},
            )
            self._process_queue()
            raise SessionAdmissionError(f"Failed to start session {session.id}: {failure}") from failure

        assert agent is not None
        if self._closed:
            await agent.terminate()
            session.transition(SessionStatus.FAILED, at=self._clock())
            raise PoolShutdownError(f"Session pool shut down while starting {session.id}")

        session.transition(SessionStatus.ACTIVE)
        self._active[session.id] = session
        self._agents[session.id] = agent
        self._watchers[session.id] = asyncio.create_task(self._watch(session.id, agent))
        self._record(session)
        logger.info("Started session", extra={"session_id": session.id, "project": session.project})
        return session

    def _process_queue(self) -> None:
        while self._queue and self.has_available_slot() and not self._closed:
            request = self._queue.pop(0)
            future = self._waiters.pop(request.ticket, None)
            if future is None or future.done():
                continue
            session = self._reserve(request.project, request.task, request.context)
            admission = asyncio.create_task(self._launch(session))
            self._admissions.add(admission)
            admission.add_done_callback(lambda task, waiter=future: self._deliver(task, waiter))

    def _deliver(self, task: asyncio.Task[SessionInstance], future: asyncio.Future[SessionInstance]) -> None:
        self._admissions.discard(task)
        if future.done():
            if not task.cancelled() and task.exception() is None:
                # The caller went away after its launch began; nobody owns the session.
                orphan = task.result()
                logger.warning(
                    "Terminating session whose requester was cancelled",
                    extra={"session_id": orphan.id, "project": orphan.project},
                )
                cleanup = asyncio.create_task(self._terminate_orphan(orphan.id))
                self._admissions.add(cleanup)
                cleanup.add_done_callback(self._admissions.discard)
            return
        if task.cancelled():
            future.cancel()
        elif task.exception() is not None:
            future.set_exception(task.exception())
        else:
            future.set_result(task.result())

    async def _terminate_orphan(self, session_id: str) -> None:
        if not self.is_active(session_id):
            return
        try:
            await self.terminate_session(session_id)
        except SessionNotFoundError:
            logger.debug("Orphaned session already ended", extra={"session_id": session_id})

    async def _watch(self, session_id: str, agent: RunningAgent) -> None:
        try:
            result = await agent.wait()
        except Exception as exc:
            logger.error("Session process errored", extra={"session_id": session_id, "error": str(exc)})
            result = AgentExit(returncode=1, stdout="", stderr=str(exc))
        await self._handle_exit(session_id, result)

    async def _handle_exit(self, session_id: str, result: AgentExit) -> None:
        session = self._active.pop(session_id, None)
        if session is None:
            return
        self._agents.pop(session_id, None)
        self._watchers.pop(session_id, None)

        session.exit_code = result.returncode
        session.transition(
            SessionStatus.COMPLETED if result.ok else SessionStatus.FAILED,
            at=self._clock(),
        )
        self._record(session)
        logger.info(
            "Session ended",
            extra={"session_id": session_id, "status": session.status.value, "exit_code": result.returncode},
        )
        self._process_queue()
        await self._notify(session, result)

    async def terminate_session(self, session_id: str) -> SessionInstance:
        """Force-stop an active session and mark it completed."""

        session = self._active.get(session_id)
        agent = self._agents.get(session_id)
        if session is None or agent is None:
            raise SessionNotFoundError(f"Session {session_id} not found or not active")

        del self._active[session_id]
        del self._agents[session_id]
        watcher = self._watchers.pop(session_id, None)
        if watcher is not None:
            watcher.cancel()

        try:
            await agent.terminate()
        finally:
            session.transition(SessionStatus.COMPLETED, at=self._clock())
            self._record(session)
            logger.info("Terminated session", extra={"session_id": session_id})
            self._process_queue()

        await self._notify(session, None)
        return session

    async def shutdown(self) -> None:
        """Terminate every active session and reject every queued request."""

        self._closed = True
        sessions = list(self._active.values())
        agents = [self._agents[session.id] for session in sessions]
        for watcher in self._watchers.values():
            watcher.cancel()

        outcomes = await asyncio.gather(*(agent.terminate() for agent in agents), return_exceptions=True)
        for session, outcome in zip(sessions, outcomes):
            if isinstance(outcome, BaseException):
                logger.warning(
                    "Failed to terminate session during shutdown",
                    extra={"session_id": session.id, "error": str(outcome)},
                )
            session.transition(SessionStatus.COMPLETED, at=self._clock())
            self._record(session)

        self._active.clear()
        self._agents.clear()
        self._watchers.clear()

        pending, self._queue = self._queue, []
        for request in pending:
            future = self._waiters.pop(request.ticket, None)
            if future is not None and not future.done():
                future.set_exception(PoolShutdownError("Session pool shutdown"))
        self._waiters.clear()

        logger.info(
            "Session pool shutdown complete",
            extra={"terminated": len(sessions), "rejected": len(pending)},
        )

    def active_sessions_status(self) -> list[dict[str, Any]]:
        now = self._clock()
        return [
            {
                "session_id": session.id,
                "project": session.project,
                "status": session.status.value,
                "task": session.task.description,
                "duration_seconds": (now - session.started_at).total_seconds(),
            }
            for session in self._active.values()
        ]

    def queue_status(self) -> list[dict[str, Any]]:
        now = self._clock()
        return [
            {
                "ticket": request.ticket,
                "project": request.project,
                "priority": request.priority,
                "waiting_seconds": (now - request.enqueued_at).total_seconds(),
            }
            for request in self._queue
        ]

    def _record(self, session: SessionInstance) -> None:
        if self._event_store is None:
            return
        try:
            self._event_store.record_transition(
                session_id=session.id,
                project=session.project,
                status=session.status.value,
                detail={"task": session.task.description, "exit_code": session.exit_code},
            )
        except Exception as exc:
            logger.warning("Failed to record session event", extra={"session_id": session.id, "error": str(exc)})

    async def _notify(self, session: SessionInstance, result: AgentExit | None) -> None:
        for listener in self._listeners:
            try:
                outcome = listener(session, result)
                if inspect.isawaitable(outcome):
                    await outcome
            except Exception:
                logger.exception("Completion listener failed", extra={"session_id": session.id})


__all__ = [
    "CompletionListener",
    "PoolShutdownError",
    "QueuedRequest",
    "SessionAdmissionError",
    "SessionNotFoundError",
    "SessionPool",
    "SessionPoolError",
    "calculate_priority",
]
