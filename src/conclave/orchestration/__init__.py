"""Dependency-aware orchestration of features spanning several projects."""

from .models import (
    CoordinationPoint,
    FeatureRequest,
    FeatureScope,
    OrchestrationPlan,
    OrchestrationResult,
    Phase,
    Strategy,
)
from .orchestrator import (
    FeatureOrchestrator,
    OrchestrationCancelledError,
    OrchestrationError,
    PhaseTimeoutError,
)
from .planner import create_plan
from .waiting import WaitCancelledError, WaitTimeoutError, wait_for_condition

__all__ = [
    "CoordinationPoint",
    "FeatureOrchestrator",
    "FeatureRequest",
    "FeatureScope",
    "OrchestrationCancelledError",
    "OrchestrationError",
    "OrchestrationPlan",
    "OrchestrationResult",
    "Phase",
    "PhaseTimeoutError",
    "Strategy",
    "WaitCancelledError",
    "WaitTimeoutError",
    "create_plan",
    "wait_for_condition",
]
