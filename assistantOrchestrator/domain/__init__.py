"""Domain entities, stream events and orchestrator action schema."""

from .models import (
    AgentOutcome,
    AgentType,
    Artifact,
    PlanCompletion,
    PlanStatus,
    ReadinessReport,
    ReasoningStep,
    RunMode,
    RunResult,
    RunState,
    RunStatus,
    SubAgentState,
    SubAgentStatus,
    TaskNode,
    TaskPlan,
    TaskStatus,
    ToolCallRecord,
)
from .events import EventType, StreamEvent

__all__ = [
    "AgentOutcome",
    "AgentType",
    "Artifact",
    "PlanCompletion",
    "PlanStatus",
    "ReadinessReport",
    "ReasoningStep",
    "RunMode",
    "RunResult",
    "RunState",
    "RunStatus",
    "SubAgentState",
    "SubAgentStatus",
    "TaskNode",
    "TaskPlan",
    "TaskStatus",
    "ToolCallRecord",
    "EventType",
    "StreamEvent",
]
