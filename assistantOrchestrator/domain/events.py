"""Typed stream events published to the event bus."""

from __future__ import annotations

import copy
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, Literal, Optional, get_args

from .models import utcnow

EventType = Literal[
    "orchestrator.status",
    "plan.created",
    "plan.modified",
    "task.started",
    "task.completed",
    "task.failed",
    "agent.spawned",
    "agent.token",
    "agent.reasoning",
    "agent.tool_call",
    "agent.tool_result",
    "agent.intervention",
    "agent.terminated",
    "agent.final",
    "agent.error",
]

EVENT_TYPES = frozenset(get_args(EventType))


@dataclass(frozen=True)
class StreamEvent:
    """One event on a run's stream.

    Attributes:
        type: Event type from the closed EventType set
        run_id: Owning run
        data: Event payload (deep-copied at construction)
        agent_id: Emitting sub-agent, if any
        timestamp: Creation time (UTC)
    """

    type: EventType
    run_id: str
    data: Dict[str, Any] = field(default_factory=dict)
    agent_id: Optional[str] = None
    timestamp: datetime = field(default_factory=utcnow)

    def __post_init__(self) -> None:
        if self.type not in EVENT_TYPES:
            raise ValueError(f"Unknown event type: {self.type}")
        object.__setattr__(self, "data", copy.deepcopy(self.data))

    def to_dict(self) -> Dict[str, Any]:
        payload = {
            "type": self.type,
            "run_id": self.run_id,
            "timestamp": self.timestamp.isoformat(),
            **self.data,
        }
        if self.agent_id:
            payload["agent_id"] = self.agent_id
        return payload


__all__ = ["EventType", "EVENT_TYPES", "StreamEvent"]
