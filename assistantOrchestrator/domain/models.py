"""Core orchestration entities: runs, plans, task nodes and sub-agents.

The control loop owns every Run / Plan / TaskNode transition and each
sub-agent owns its own SubAgentState. Readers (event stream, monitoring
tools) always receive copies produced by ``snapshot()`` / ``to_dict()``.
"""

from __future__ import annotations

import copy
import uuid
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional, Set


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def new_id() -> str:
    return str(uuid.uuid4())


class RunStatus(str, Enum):
    """Orchestrator run lifecycle."""
    IDLE = "idle"
    PLANNING = "planning"
    EXECUTING = "executing"
    MONITORING = "monitoring"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (RunStatus.COMPLETED, RunStatus.FAILED)


class PlanStatus(str, Enum):
    PLANNING = "planning"
    EXECUTING = "executing"
    COMPLETED = "completed"
    FAILED = "failed"


class TaskStatus(str, Enum):
    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"


class AgentType(str, Enum):
    """Closed set of specialist worker types."""
    GENERAL = "general"
    RESEARCH = "research"
    CODING = "coding"
    SCHEDULING = "scheduling"
    PRODUCTIVITY = "productivity"
    MESSAGING = "messaging"


class SubAgentStatus(str, Enum):
    INITIALIZING = "initializing"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self in (SubAgentStatus.COMPLETED, SubAgentStatus.FAILED, SubAgentStatus.CANCELLED)


class RunMode(str, Enum):
    """How the control loop treats plain-text oracle output.

    DIRECT streams tokens to the user; PLANNING treats text as internal
    narration while a plan is active; SCRIPTED runs a predefined plan
    without oracle decisions.
    """
    DIRECT = "direct"
    PLANNING = "planning"
    SCRIPTED = "scripted"


@dataclass
class TaskNode:
    """One unit of work in a plan."""

    id: str
    plan_id: str
    description: str
    agent_type: AgentType
    dependencies: Set[str] = field(default_factory=set)
    status: TaskStatus = TaskStatus.PENDING
    assigned_agent_id: Optional[str] = None
    result: Any = None
    retry_count: int = 0
    created_at: datetime = field(default_factory=utcnow)
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "description": self.description,
            "agent_type": self.agent_type.value,
            "dependencies": sorted(self.dependencies),
            "status": self.status.value,
            "assigned_agent_id": self.assigned_agent_id,
            "result": copy.deepcopy(self.result),
            "retry_count": self.retry_count,
            "started_at": self.started_at.isoformat() if self.started_at else None,
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
        }


@dataclass
class TaskPlan:
    """Dependency graph of task nodes, exactly one active plan per run."""

    id: str
    run_id: str
    reasoning: str = ""
    status: PlanStatus = PlanStatus.PLANNING
    nodes: List[TaskNode] = field(default_factory=list)
    created_at: datetime = field(default_factory=utcnow)

    def get_node(self, node_id: str) -> Optional[TaskNode]:
        for node in self.nodes:
            if node.id == node_id:
                return node
        return None

    def snapshot(self) -> "TaskPlan":
        return copy.deepcopy(self)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "run_id": self.run_id,
            "reasoning": self.reasoning,
            "status": self.status.value,
            "tasks": [node.to_dict() for node in self.nodes],
        }


@dataclass
class RunState:
    """Per-run orchestrator state (OrchestratorState)."""

    run_id: str
    user_id: str
    status: RunStatus = RunStatus.IDLE
    plan_id: Optional[str] = None
    active_agent_ids: Set[str] = field(default_factory=set)
    loop_counters: Dict[str, int] = field(default_factory=dict)
    total_interventions: int = 0
    total_tokens: int = 0
    total_cost: float = 0.0
    started_at: datetime = field(default_factory=utcnow)
    completed_at: Optional[datetime] = None

    def set_status(self, status: RunStatus) -> None:
        """Move to ``status``; terminal states are entered once and never left."""
        if self.status.is_terminal:
            raise ValueError(f"Run {self.run_id} is already {self.status.value}")
        self.status = status
        if status.is_terminal:
            self.completed_at = utcnow()

    def add_usage(self, tokens: int, cost: float) -> None:
        self.total_tokens += tokens
        self.total_cost += cost

    def snapshot(self) -> "RunState":
        return copy.deepcopy(self)


@dataclass(frozen=True)
class ToolCallRecord:
    id: str
    tool_id: str
    input: Dict[str, Any]
    output: Any = None
    status: str = "completed"
    duration_ms: int = 0
    created_at: datetime = field(default_factory=utcnow)


@dataclass(frozen=True)
class ReasoningStep:
    """A single thinking/decision/observation entry in an agent's log."""

    id: str
    type: str
    content: str
    created_at: datetime = field(default_factory=utcnow)


@dataclass(frozen=True)
class Artifact:
    id: str
    type: str  # "code" | "data"
    name: str
    content: Any
    created_at: datetime = field(default_factory=utcnow)


@dataclass
class SubAgentState:
    """State of one worker agent; written only by the agent's own loop."""

    id: str
    run_id: str
    task_node_id: str
    agent_type: AgentType
    task_description: str
    upstream_context: Optional[str] = None
    additional_tools: Set[str] = field(default_factory=set)
    status: SubAgentStatus = SubAgentStatus.INITIALIZING
    messages: List[Any] = field(default_factory=list)
    tool_calls: List[ToolCallRecord] = field(default_factory=list)
    reasoning_steps: List[ReasoningStep] = field(default_factory=list)
    artifacts: List[Artifact] = field(default_factory=list)
    total_tokens: int = 0
    total_cost: float = 0.0
    pending_guidance: Optional[str] = None
    created_at: datetime = field(default_factory=utcnow)
    completed_at: Optional[datetime] = None

    def snapshot(self) -> "SubAgentState":
        return copy.deepcopy(self)


@dataclass(frozen=True)
class AgentOutcome:
    """Single resolution of a sub-agent's completion signal."""

    success: bool
    output: Any = None
    error: Optional[str] = None


@dataclass(frozen=True)
class PlanCompletion:
    """Completion counts; failed includes cancelled, pending includes in_progress."""

    is_complete: bool
    is_success: bool
    completed: int
    failed: int
    pending: int
    total: int


@dataclass(frozen=True)
class ReadinessReport:
    ready: List[TaskNode]
    waiting: List[TaskNode]
    completed: List[TaskNode]
    failed: List[TaskNode]


@dataclass
class RunResult:
    """Value returned from ``execute_run``; never raises past the run boundary."""

    success: bool
    response: Optional[str] = None
    error: Optional[str] = None
    total_tokens: int = 0
    total_cost: float = 0.0
    plan_id: Optional[str] = None
    tasks_completed: int = 0
    tasks_failed: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


__all__ = [
    "utcnow",
    "new_id",
    "RunStatus",
    "PlanStatus",
    "TaskStatus",
    "AgentType",
    "SubAgentStatus",
    "RunMode",
    "TaskNode",
    "TaskPlan",
    "RunState",
    "ToolCallRecord",
    "ReasoningStep",
    "Artifact",
    "SubAgentState",
    "AgentOutcome",
    "PlanCompletion",
    "ReadinessReport",
    "RunResult",
]
