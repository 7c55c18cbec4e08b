"""FastMCP server bootstrap for Conclave."""

import asyncio
import json
import logging
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, AsyncIterator, Optional

from fastmcp import Context, FastMCP

from . import __version__
from .config import ConclaveSettings, get_settings
from .knowledge import HeuristicExtractor, KnowledgeStore
from .memory import WorkingMemoryStore
from .orchestration import FeatureOrchestrator
from .recorder import SessionRecorder
from .sessions import AgentLauncher, AgentNotFoundError, SessionPool, UnavailableLauncher
from .sessions.launcher import Launcher
from .storage import EventStoreUnavailableError, SessionEventStore
from .tools import register_tools
from .workspace import ContextProvider, ProjectLoadError, ProjectLoader

logger = logging.getLogger(__name__)


def configure_logging(level: str) -> None:
    """Configure root logging for the Conclave server."""

    logging.basicConfig(
        level=getattr(logging, level, logging.INFO),
        format="[%(asctime)s] [%(levelname)s] %(name)s: %(message)s",
    )


def _run_sync(coro):
    """Execute an async coroutine on a dedicated event loop."""

    loop = asyncio.new_event_loop()
    try:
        return loop.run_until_complete(coro)
    finally:
        loop.close()


def create_server(
    settings: Optional[ConclaveSettings] = None,
    launcher: Launcher | None = None,
) -> FastMCP:
    """Wire the stores, pool and orchestrator together behind a FastMCP server."""

    settings = settings or get_settings()
    storage_path = Path(settings.storage_path)

    project_loader = ProjectLoader(settings.project_paths)
    project_error: str | None = None
    try:
        projects = project_loader.load_all()
    except ProjectLoadError as exc:
        logger.error("Failed to load project catalog", extra={"error": str(exc)})
        projects = {}
        project_error = str(exc)

    agent_metadata: dict[str, Any] = {
        "available": False,
        "path": None,
        "version": None,
        "error": None,
    }
    session_dir = None
    if launcher is None:
        try:
            agent = AgentLauncher(
                Path(settings.agent_path) if settings.agent_path else None,
                workspace_root=settings.workspace_root,
                sessions_dir=storage_path / "sessions",
                extra_args=settings.agent_args,
            )
        except AgentNotFoundError as exc:
            agent_metadata["error"] = str(exc)
            launcher = UnavailableLauncher(str(exc))
        else:
            agent_metadata.update({"available": True, "path": str(agent.executable)})
            try:
                version_result = _run_sync(agent.version())
            except OSError as exc:
                agent_metadata["error"] = str(exc)
            else:
                if version_result.ok:
                    agent_metadata["version"] = version_result.stdout.strip()
                else:
                    agent_metadata["error"] = version_result.stderr.strip() or "Agent version command failed"
            session_dir = agent.session_dir
            launcher = agent
    else:
        agent_metadata["available"] = not isinstance(launcher, UnavailableLauncher)
        session_dir = getattr(launcher, "session_dir", None)

    event_store: SessionEventStore | None = None
    event_metadata: dict[str, Any] = {
        "enabled": settings.events_enabled,
        "available": False,
        "path": str(storage_path / "events"),
        "error": None,
    }
    if settings.events_enabled:
        try:
            event_store = SessionEventStore(storage_path / "events")
            event_store.ping()
            event_metadata["available"] = True
        except EventStoreUnavailableError as exc:
            event_metadata["error"] = str(exc)
            event_store = None

    memory = WorkingMemoryStore(storage_path)
    knowledge = KnowledgeStore(storage_path, extractor=HeuristicExtractor(projects))
    contexts = ContextProvider(projects, knowledge, memory)
    pool = SessionPool(launcher, max_concurrency=settings.max_concurrency, event_store=event_store)
    pool.add_completion_listener(
        SessionRecorder(
            memory,
            knowledge,
            session_dir=session_dir,
            keep_recent_sessions=settings.keep_recent_sessions,
        )
    )
    orchestrator = FeatureOrchestrator(
        pool,
        contexts,
        poll_interval=settings.phase_poll_interval,
        phase_timeout=settings.phase_timeout,
    )

    @asynccontextmanager
    async def lifespan(_: FastMCP) -> AsyncIterator[dict[str, Any]]:
        try:
            yield {}
        finally:
            await pool.shutdown()

    server = FastMCP(
        name="Conclave",
        instructions=(
            "Conclave runs project-scoped coding agent sessions across a multi-project "
            "workspace with bounded concurrency, and keeps working memory and knowledge "
            "between sessions. Use the provided tools to start sessions, orchestrate "
            "features, and read or record knowledge."
        ),
        lifespan=lifespan,
    )

    handles = register_tools(
        server,
        pool=pool,
        orchestrator=orchestrator,
        contexts=contexts,
        memory=memory,
        knowledge=knowledge,
        settings=settings,
    )

    @server.resource(
        "resource://conclave/status",
        name="conclave_status",
        description="Provides the current runtime status for the Conclave server.",
        mime_type="application/json",
    )
    def status_resource(context: Context) -> str:
        """Return a JSON string summarizing runtime state."""

        payload = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "server_version": __version__,
            "log_level": settings.log_level,
            "projects": {
                "count": len(projects),
                "names": sorted(projects),
                "error": project_error,
            },
            "agent": agent_metadata,
            "events": event_metadata,
            "pool": {
                "max_concurrency": pool.max_concurrency,
                "active": pool.active_sessions_status(),
                "queued": pool.queue_status(),
                "closed": pool.closed,
            },
            "storage_path": str(storage_path),
            "request_id": getattr(context, "request_id", None),
        }
        return json.dumps(payload)

    setattr(server, "pool", pool)
    setattr(server, "orchestrator", orchestrator)
    setattr(server, "memory_store", memory)
    setattr(server, "knowledge_store", knowledge)
    setattr(server, "agent_metadata", agent_metadata)
    setattr(server, "event_metadata", event_metadata)
    setattr(server, "tool_handles", handles)
    return server


def main() -> None:
    """Entry point for running the Conclave server via CLI."""

    settings = get_settings()
    configure_logging(settings.log_level)

    server = create_server(settings)
    logger.info(
        "Launching Conclave server",
        extra={
            "version": __version__,
            "log_level": settings.log_level,
            "agent_available": getattr(server, "agent_metadata", {}).get("available"),
            "events_available": getattr(server, "event_metadata", {}).get("available"),
        },
    )
    server.run()


if __name__ == "__main__":
    main()
