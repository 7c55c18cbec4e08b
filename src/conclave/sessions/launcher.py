"""Async launcher for the external coding agent."""

from __future__ import annotations

import asyncio
import logging
import shutil
from dataclasses import dataclass
from pathlib import Path
from typing import Protocol, Sequence

from .models import SessionInstance
from .utils import session_environment

logger = logging.getLogger(__name__)


class AgentLauncherError(RuntimeError):
    """Base class for agent launcher errors."""


class AgentNotFoundError(AgentLauncherError):
    """Raised when the agent executable cannot be located."""


@dataclass(slots=True)
class AgentExit:
    """Holds the outcome of one agent process."""

    returncode: int
    stdout: str
    stderr: str

    @property
    def ok(self) -> bool:
        return self.returncode == 0


class RunningAgent(Protocol):
    """Handle the pool keeps for each started session."""

    async def wait(self) -> AgentExit:
        ...

    async def terminate(self) -> None:
        ...


class Launcher(Protocol):
    async def start(self, session: SessionInstance) -> RunningAgent:
        ...


def render_session_prompt(session: SessionInstance) -> str:
    task = session.task
    sections = [
        f"Project: {session.project}",
        f"Task ({task.kind.value}, {task.complexity.value} complexity):\n{task.description.strip()}",
    ]
    if task.scope:
        sections.append("Scope:\n" + "\n".join(f"- {project}" for project in task.scope))
    if task.cross_project_dependencies:
        sections.append(
            "Coordinate with:\n"
            + "\n".join(f"- {project}" for project in task.cross_project_dependencies)
        )
    if session.context is not None:
        sections.append(session.context.render())
    return "\n\n".join(sections)


class AgentProcess:
    """A started agent subprocess."""

    def __init__(self, process: asyncio.subprocess.Process, *, grace_period: float = 5.0) -> None:
        self._process = process
        self._grace_period = grace_period

    @property
    def pid(self) -> int:
        return self._process.pid

    async def wait(self) -> AgentExit:
        stdout_bytes, stderr_bytes = await self._process.communicate()
        return AgentExit(
            returncode=self._process.returncode if self._process.returncode is not None else -1,
            stdout=stdout_bytes.decode("utf-8", errors="replace"),
            stderr=stderr_bytes.decode("utf-8", errors="replace"),
        )

    async def terminate(self) -> None:
        if self._process.returncode is not None:
            return
        self._process.terminate()
        try:
            await asyncio.wait_for(self._process.wait(), timeout=self._grace_period)
        except asyncio.TimeoutError:
            logger.warning("Agent ignored SIGTERM, killing", extra={"pid": self._process.pid})
            self._process.kill()
            await self._process.wait()


class AgentLauncher:
    """Start agent sessions as subprocesses with a written context brief."""

    def __init__(
        self,
        executable: Path | None = None,
        *,
        workspace_root: Path,
        sessions_dir: Path,
        extra_args: Sequence[str] = (),
        binary_name: str = "claude",
    ) -> None:
        self._executable_path = self._resolve_executable(executable, binary_name)
        self._workspace_root = Path(workspace_root)
        self._sessions_dir = Path(sessions_dir)
        self._extra_args = tuple(extra_args)

    @staticmethod
    def _resolve_executable(explicit: Path | None, binary_name: str) -> Path:
        if explicit is not None:
            candidate = Path(explicit)
            if candidate.exists() and candidate.is_file():
                return candidate
            raise AgentNotFoundError(f"Agent executable not found at {candidate}")

        binary = shutil.which(binary_name)
        if binary is None:
            raise AgentNotFoundError(f"Agent executable '{binary_name}' not found on PATH")
        return Path(binary)

    @property
    def executable(self) -> Path:
        return self._executable_path

    def session_dir(self, session_id: str) -> Path:
        return self._sessions_dir / "active" / session_id

    async def version(self) -> AgentExit:
        process = await asyncio.create_subprocess_exec(
            str(self._executable_path),
            "--version",
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
        )
        return await AgentProcess(process).wait()

    async def start(self, session: SessionInstance) -> AgentProcess:
        session_dir = self.session_dir(session.id)
        session_dir.mkdir(parents=True, exist_ok=True)
        prompt = render_session_prompt(session)
        (session_dir / "context.md").write_text(prompt, encoding="utf-8")

        try:
            process = await asyncio.create_subprocess_exec(
                str(self._executable_path),
                *self._extra_args,
                prompt,
                stdin=asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                cwd=str(self._workspace_root),
                env=session_environment(session, session_dir),
            )
        except OSError as exc:
            raise AgentLauncherError(f"Failed to start agent for {session.id}: {exc}") from exc

        logger.info(
            "Agent process started",
            extra={"session_id": session.id, "project": session.project, "pid": process.pid},
        )
        return AgentProcess(process)


class UnavailableLauncher:
    """Launcher used when no agent executable could be resolved; every start fails."""

    def __init__(self, reason: str) -> None:
        self.reason = reason

    async def start(self, session: SessionInstance) -> RunningAgent:
        raise AgentNotFoundError(self.reason)


__all__ = [
    "AgentExit",
    "AgentLauncher",
    "AgentLauncherError",
    "AgentNotFoundError",
    "AgentProcess",
    "Launcher",
    "RunningAgent",
    "UnavailableLauncher",
    "render_session_prompt",
]
