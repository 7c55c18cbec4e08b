"""Tool registration for Conclave."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Literal

from fastmcp import Context, FastMCP

from ..config import ConclaveSettings
from ..knowledge import KnowledgeScope, KnowledgeStore
from ..memory import EntryKind, SessionHandoff, WorkingMemoryStore
from ..orchestration import FeatureOrchestrator, FeatureRequest, Strategy
from ..sessions import Complexity, SessionInstance, SessionPool, TaskDescriptor, TaskKind
from ..workspace import ContextProvider


@dataclass(slots=True)
class ToolHandles:
    request_session: Any
    terminate_session: Any
    session_status: Any
    plan_feature: Any
    orchestrate_feature: Any
    memory_add: Any
    memory_show: Any
    memory_handoff: Any
    memory_cleanup: Any
    memory_resolve: Any
    knowledge_view: Any
    record_decision: Any
    record_pattern: Any
    compress_sessions: Any
    search_knowledge: Any


def _session_summary(session: SessionInstance) -> dict[str, Any]:
    return {
        "session_id": session.id,
        "project": session.project,
        "status": session.status.value,
        "task": session.task.description,
        "kind": session.task.kind.value,
        "started_at": session.started_at.isoformat(),
        "ended_at": session.ended_at.isoformat() if session.ended_at else None,
        "exit_code": session.exit_code,
    }


def _feature_request(
    settings: ConclaveSettings,
    feature: str,
    projects: list[str] | None,
    strategy: str,
    max_sessions: int | None,
    priority: int,
) -> FeatureRequest:
    try:
        chosen = Strategy(strategy)
    except ValueError as exc:
        raise ValueError(
            f"Unknown strategy '{strategy}'. Use one of {[item.value for item in Strategy]}"
        ) from exc
    return FeatureRequest(
        feature=feature,
        projects=tuple(projects or ()),
        max_sessions=max_sessions or settings.max_concurrency,
        strategy=chosen,
        priority=priority,
    )


def register_tools(
    server: FastMCP,
    *,
    pool: SessionPool,
    orchestrator: FeatureOrchestrator,
    contexts: ContextProvider,
    memory: WorkingMemoryStore,
    knowledge: KnowledgeStore,
    settings: ConclaveSettings,
) -> ToolHandles:
    """Register Conclave's MCP tools on the server."""

    async def _request_session(
        project: str,
        description: str,
        *,
        kind: str = "feature",
        priority: int = 50,
        complexity: str = "medium",
        cross_project_dependencies: list[str] | None = None,
        context: Context | None = None,
    ) -> dict[str, Any]:
        """Start an agent session in one project, waiting in the queue if the pool is full."""

        try:
            task = TaskDescriptor(
                kind=TaskKind(kind),
                description=description,
                scope=(project,),
                base_priority=priority,
                complexity=Complexity(complexity),
                cross_project_dependencies=tuple(cross_project_dependencies or ()),
            )
        except ValueError as exc:
            raise ValueError(f"Invalid task descriptor: {exc}") from exc

        name = contexts.resolve(project)
        session = await pool.request_session(name, task, contexts.load_context(name))
        _emit_log(
            context,
            "info",
            "Session requested",
            extra={"session_id": session.id, "project": name},
        )
        return _session_summary(session)

    async def _terminate_session(session_id: str, context: Context | None = None) -> dict[str, Any]:
        """Force-stop an active session."""

        session = await pool.terminate_session(session_id)
        _emit_log(context, "info", "Session terminated", extra={"session_id": session_id})
        return _session_summary(session)

    def _session_status(context: Context | None = None) -> dict[str, Any]:
        """Report active sessions and queued requests."""

        active = pool.active_sessions_status()
        queued = pool.queue_status()
        _emit_log(
            context,
            "debug",
            "Session status requested",
            extra={"active": len(active), "queued": len(queued)},
        )
        return {
            "max_concurrency": pool.max_concurrency,
            "active": active,
            "queued": queued,
        }

    def _plan_feature(
        feature: str,
        projects: list[str] | None = None,
        *,
        strategy: str = "dependency-aware",
        max_sessions: int | None = None,
        context: Context | None = None,
    ) -> dict[str, Any]:
        """Compute the phase plan for a feature without starting any sessions."""

        request = _feature_request(settings, feature, projects, strategy, max_sessions, 50)
        scope = orchestrator.analyze_scope(request.feature, request.projects)
        plan = orchestrator.create_plan(request, scope)
        _emit_log(
            context,
            "info",
            "Feature planned",
            extra={"feature": feature, "phases": len(plan.phases)},
        )
        return {
            "feature": feature,
            "strategy": request.strategy.value,
            "scope": {
                "primary": list(scope.primary_projects),
                "secondary": list(scope.secondary_projects),
                "shared_resources": list(scope.shared_resources),
                "coordination_required": scope.coordination_required,
            },
            "plan": plan.to_dict(),
        }

    async def _orchestrate_feature(
        feature: str,
        projects: list[str] | None = None,
        *,
        strategy: str = "dependency-aware",
        max_sessions: int | None = None,
        priority: int = 50,
        context: Context | None = None,
    ) -> dict[str, Any]:
        """Plan a feature and drive its phases through the session pool."""

        request = _feature_request(settings, feature, projects, strategy, max_sessions, priority)
        plan, result = await orchestrator.orchestrate(request)
        _emit_log(
            context,
            "info" if result.success else "warning",
            "Feature orchestration finished",
            extra={"feature": feature, "success": result.success, "sessions": len(result.sessions)},
        )
        return {"plan": plan.to_dict(), "result": result.to_dict()}

    def _memory_add(
        project: str,
        kind: Literal["todo", "completed", "blocked", "question", "decision", "change"],
        content: str,
        *,
        session_id: str = "manual",
        context: Context | None = None,
    ) -> dict[str, Any]:
        """Add an entry to a project's working memory."""

        try:
            entry_kind = EntryKind(kind)
        except ValueError as exc:
            raise ValueError(f"Unknown entry kind '{kind}'") from exc

        entry = memory.add_entry(project, entry_kind, content, session_id=session_id)
        _emit_log(context, "info", "Working memory entry added", extra={"project": project, "kind": kind})
        return entry.model_dump(mode="json")

    def _memory_show(project: str, context: Context | None = None) -> str:
        """Render the working-memory brief a new session would receive."""

        _emit_log(context, "debug", "Working memory requested", extra={"project": project})
        return memory.generate_session_context(project)

    def _memory_handoff(
        project: str,
        session_id: str,
        task_description: str,
        *,
        started_at: str | None = None,
        completed: list[str] | None = None,
        blocked: list[str] | None = None,
        todos: list[str] | None = None,
        questions: list[str] | None = None,
        next_steps: list[str] | None = None,
        build_status: Literal["success", "failed", "not-run"] = "not-run",
        tests_status: Literal["passing", "failing", "not-run"] = "not-run",
        context: Context | None = None,
    ) -> dict[str, Any]:
        """Record a handoff for a session that ran outside the pool."""

        now = datetime.now(timezone.utc)
        handoff = SessionHandoff(
            session_id=session_id,
            project=project,
            started_at=datetime.fromisoformat(started_at) if started_at else now,
            ended_at=now,
            task_description=task_description,
            completed=completed or [],
            blocked=blocked or [],
            todos=todos or [],
            questions=questions or [],
            next_steps=next_steps or [],
            build_status=build_status,
            tests_status=tests_status,
        )
        memory.add_handoff(project, handoff)
        _emit_log(context, "info", "Handoff recorded", extra={"project": project, "session_id": session_id})
        return handoff.model_dump(mode="json")

    def _memory_cleanup(
        project: str,
        max_age_hours: float | None = None,
        context: Context | None = None,
    ) -> dict[str, Any]:
        """Drop stale todos, changes and questions; blocked items are kept."""

        hours = max_age_hours if max_age_hours is not None else settings.memory_max_age_hours
        removed = memory.cleanup_old_entries(project, hours)
        _emit_log(context, "info", "Working memory cleaned", extra={"project": project, "removed": removed})
        return {"project": project, "removed": removed, "max_age_hours": hours}

    def _memory_resolve(project: str, content: str, context: Context | None = None) -> dict[str, Any]:
        """Mark a blocked item resolved by removing it from working memory."""

        removed = memory.resolve_blocked(project, content)
        _emit_log(context, "info", "Blocked item resolved", extra={"project": project, "removed": removed})
        return {"project": project, "removed": removed}

    def _knowledge_view(project: str, context: Context | None = None) -> dict[str, Any]:
        """Return decisions and patterns visible to a project, project records overriding workspace ones."""

        view = knowledge.get_hierarchical_view(project)
        _emit_log(
            context,
            "debug",
            "Knowledge view requested",
            extra={"project": project, "decisions": len(view.decisions), "patterns": len(view.patterns)},
        )
        return {
            "project": project,
            "inheritance_chain": view.inheritance_chain,
            "decisions": [item.model_dump(mode="json") for item in view.decisions],
            "patterns": [item.model_dump(mode="json") for item in view.patterns],
            "history": view.library.history.model_dump(mode="json"),
        }

    def _record_decision(
        title: str,
        project: str | None = None,
        *,
        scope: Literal["workspace", "library"] = "library",
        description: str = "",
        reasoning: str = "",
        impact: str = "",
        alternatives: list[str] | None = None,
        tags: list[str] | None = None,
        context: Context | None = None,
    ) -> dict[str, Any]:
        """Record an architectural decision for a project or for the whole workspace."""

        fields = {
            "description": description,
            "reasoning": reasoning,
            "impact": impact,
            "alternatives": alternatives or [],
            "tags": tags or [],
        }
        if scope == KnowledgeScope.WORKSPACE.value:
            decision = knowledge.record_workspace_decision(title, **fields)
        elif project:
            decision = knowledge.record_decision(project, title, **fields)
        else:
            raise ValueError("A project is required for library-scoped decisions")

        _emit_log(context, "info", "Decision recorded", extra={"id": decision.id, "scope": scope})
        return decision.model_dump(mode="json")

    def _record_pattern(
        name: str,
        project: str | None = None,
        *,
        scope: Literal["workspace", "library"] = "library",
        description: str = "",
        code: str = "",
        language: str = "python",
        use_case: str = "",
        complexity: Literal["low", "medium", "high"] = "medium",
        tags: list[str] | None = None,
        context: Context | None = None,
    ) -> dict[str, Any]:
        """Record a reusable code pattern for a project or for the whole workspace."""

        fields = {
            "description": description,
            "code": code,
            "language": language,
            "use_case": use_case,
            "complexity": complexity,
            "tags": tags or [],
        }
        if scope == KnowledgeScope.WORKSPACE.value:
            pattern = knowledge.record_workspace_pattern(name, **fields)
        elif project:
            pattern = knowledge.record_pattern(project, name, **fields)
        else:
            raise ValueError("A project is required for library-scoped patterns")

        _emit_log(context, "info", "Pattern recorded", extra={"id": pattern.id, "scope": scope})
        return pattern.model_dump(mode="json")

    def _compress_sessions(
        project: str,
        keep_recent: int | None = None,
        context: Context | None = None,
    ) -> dict[str, Any]:
        """Fold older session summaries into the project's accumulated knowledge."""

        limit = keep_recent if keep_recent is not None else settings.keep_recent_sessions
        if limit < 1:
            raise ValueError("keep_recent must be at least 1")
        compressed = knowledge.compress_old_sessions(project, limit)
        _emit_log(context, "info", "Sessions compressed", extra={"project": project, "compressed": compressed})
        return {"project": project, "compressed": compressed, "keep_recent": limit}

    def _search_knowledge(
        query: str,
        project: str | None = None,
        context: Context | None = None,
    ) -> dict[str, Any]:
        """Search accumulated knowledge across one or all projects."""

        results = knowledge.search(query, project)
        _emit_log(context, "debug", "Knowledge searched", extra={"query": query, "matches": results.total})
        return {"query": query, "total": results.total, **results.model_dump(mode="json")}

    tool_request = server.tool(
        name="request_session",
        description="Start an agent session for a project, queueing by priority when the pool is full.",
    )(_request_session)

    tool_terminate = server.tool(
        name="terminate_session",
        description="Force-stop an active agent session and admit the next queued request.",
    )(_terminate_session)

    tool_status = server.tool(
        name="session_status",
        description="List active sessions and queued session requests.",
    )(_session_status)

    tool_plan = server.tool(
        name="plan_feature",
        description="Plan the phases needed to build a feature across workspace projects.",
    )(_plan_feature)

    tool_orchestrate = server.tool(
        name="orchestrate_feature",
        description="Plan a feature and run its sessions phase by phase.",
    )(_orchestrate_feature)

    tool_memory_add = server.tool(
        name="memory_add",
        description="Add a todo, completion, blocker, question, decision or change to working memory.",
    )(_memory_add)

    tool_memory_show = server.tool(
        name="memory_show",
        description="Show the working-memory brief for a project.",
    )(_memory_show)

    tool_memory_handoff = server.tool(
        name="memory_handoff",
        description="Record what a session completed and what it leaves for the next one.",
    )(_memory_handoff)

    tool_memory_cleanup = server.tool(
        name="memory_cleanup",
        description="Remove stale working-memory entries for a project.",
    )(_memory_cleanup)

    tool_memory_resolve = server.tool(
        name="memory_resolve",
        description="Resolve a blocked item in a project's working memory.",
    )(_memory_resolve)

    tool_knowledge_view = server.tool(
        name="knowledge_view",
        description="Show workspace and project knowledge merged for a project.",
    )(_knowledge_view)

    tool_record_decision = server.tool(
        name="record_decision",
        description="Record an architectural decision at workspace or project scope.",
    )(_record_decision)

    tool_record_pattern = server.tool(
        name="record_pattern",
        description="Record a reusable code pattern at workspace or project scope.",
    )(_record_pattern)

    tool_compress = server.tool(
        name="compress_sessions",
        description="Compress older session history for a project into distilled knowledge.",
    )(_compress_sessions)

    tool_search = server.tool(
        name="search_knowledge",
        description="Search distilled patterns, solutions, decisions and cross-project insights.",
    )(_search_knowledge)

    return ToolHandles(
        request_session=tool_request,
        terminate_session=tool_terminate,
        session_status=tool_status,
        plan_feature=tool_plan,
        orchestrate_feature=tool_orchestrate,
        memory_add=tool_memory_add,
        memory_show=tool_memory_show,
        memory_handoff=tool_memory_handoff,
        memory_cleanup=tool_memory_cleanup,
        memory_resolve=tool_memory_resolve,
        knowledge_view=tool_knowledge_view,
        record_decision=tool_record_decision,
        record_pattern=tool_record_pattern,
        compress_sessions=tool_compress,
        search_knowledge=tool_search,
    )


__all__ = ["register_tools", "ToolHandles"]

logger = logging.getLogger(__name__)


def _emit_log(
    context: Context | None,
    level: str,
    message: str,
    *,
    extra: dict[str, Any] | None = None,
) -> None:
    """Log through the MCP context logger when one is attached, else the module logger."""

    payload = extra or {}

    if context is not None:
        ctx_logger = getattr(context, "logger", None)
        log_method = getattr(ctx_logger, level, None) if ctx_logger is not None else None
        if callable(log_method):
            log_method(message, extra=payload)
            return

    fallback = getattr(logger, level, logger.info)
    fallback(message, extra=payload)
