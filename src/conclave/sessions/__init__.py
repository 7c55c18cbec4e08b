"""Agent session models, launcher and pool."""

from .launcher import (
    AgentExit,
    AgentLauncher,
    AgentLauncherError,
    AgentNotFoundError,
    UnavailableLauncher,
)
from .models import Complexity, SessionInstance, SessionStatus, TaskDescriptor, TaskKind
from .pool import (
    PoolShutdownError,
    SessionAdmissionError,
    SessionNotFoundError,
    SessionPool,
    SessionPoolError,
    calculate_priority,
)

__all__ = [
    "AgentExit",
    "AgentLauncher",
    "AgentLauncherError",
    "AgentNotFoundError",
    "Complexity",
    "PoolShutdownError",
    "SessionAdmissionError",
    "SessionInstance",
    "SessionNotFoundError",
    "SessionPool",
    "SessionPoolError",
    "SessionStatus",
    "TaskDescriptor",
    "TaskKind",
    "UnavailableLauncher",
    "calculate_priority",
]
