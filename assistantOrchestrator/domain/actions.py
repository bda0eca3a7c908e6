"""Orchestrator action schema.

Every tool call the oracle emits is parsed into exactly one action: one of
the closed set of orchestrator actions below, or a ``PassThroughAction`` for
any other tool name, which is forwarded to the generic tool-invocation port.
Field aliases accept the camelCase argument names some models emit.
"""

from __future__ import annotations

from typing import Any, Dict, List, Literal, Optional, Type, Union

from pydantic import BaseModel, ConfigDict, Field


class _ActionModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")


class TaskInput(_ActionModel):
    """A task as proposed by the oracle, referenced by a temporary id."""

    temp_id: str = Field(default="", alias="tempId")
    description: str = ""
    agent_type: str = Field(default="general", alias="agentType")
    dependencies: List[str] = Field(default_factory=list)


class CreatePlanAction(_ActionModel):
    tool: Literal["create_task_plan"] = "create_task_plan"
    reasoning: str = ""
    tasks: List[TaskInput] = Field(default_factory=list)


class ModifyPlanAction(_ActionModel):
    tool: Literal["modify_plan"] = "modify_plan"
    action: Literal["add", "remove", "update", "reorder"]
    reason: str = ""
    task_id: Optional[str] = Field(default=None, alias="taskId")
    new_task: Optional[TaskInput] = Field(default=None, alias="newTask")
    new_dependencies: Optional[List[str]] = Field(default=None, alias="newDependencies")


class StartAgentAction(_ActionModel):
    tool: Literal["start_agent"] = "start_agent"
    task_id: str = Field(alias="taskId")
    additional_tools: List[str] = Field(default_factory=list, alias="additionalTools")
    instructions: Optional[str] = None


class MonitorAgentAction(_ActionModel):
    tool: Literal["monitor_agent"] = "monitor_agent"
    agent_id: str = Field(alias="agentId")


class InterveneAgentAction(_ActionModel):
    tool: Literal["intervene_agent"] = "intervene_agent"
    agent_id: str = Field(alias="agentId")
    action: Literal["guide", "redirect", "cancel"]
    reason: str = ""
    guidance: Optional[str] = None


class CancelAgentAction(_ActionModel):
    tool: Literal["cancel_agent"] = "cancel_agent"
    agent_id: str = Field(alias="agentId")
    reason: str = ""


class MarkTaskCompleteAction(_ActionModel):
    tool: Literal["mark_task_complete"] = "mark_task_complete"
    task_id: str = Field(alias="taskId")
    result: Any = None
    summary: str = ""


class MarkTaskFailedAction(_ActionModel):
    tool: Literal["mark_task_failed"] = "mark_task_failed"
    task_id: str = Field(alias="taskId")
    error: str = ""
    should_retry: bool = Field(default=False, alias="shouldRetry")
    retry_strategy: Optional[str] = Field(default=None, alias="retryStrategy")


class StoreMemoryAction(_ActionModel):
    tool: Literal["store_memory"] = "store_memory"
    content: str
    category: Literal["preference", "fact", "decision", "pattern", "general"] = "general"
    metadata: Dict[str, Any] = Field(default_factory=dict)


class RespondToUserAction(_ActionModel):
    tool: Literal["respond_to_user"] = "respond_to_user"
    content: str
    include_artifacts: bool = Field(default=False, alias="includeArtifacts")
    artifact_ids: List[str] = Field(default_factory=list, alias="artifactIds")


class GetPlanStatusAction(_ActionModel):
    tool: Literal["get_plan_status"] = "get_plan_status"


class PassThroughAction(_ActionModel):
    """Any non-orchestrator tool, forwarded to the tool-invocation port."""

    tool: Literal["pass_through"] = "pass_through"
    tool_name: str
    args: Dict[str, Any] = Field(default_factory=dict)


OrchestratorAction = Union[
    CreatePlanAction,
    ModifyPlanAction,
    StartAgentAction,
    MonitorAgentAction,
    InterveneAgentAction,
    CancelAgentAction,
    MarkTaskCompleteAction,
    MarkTaskFailedAction,
    StoreMemoryAction,
    RespondToUserAction,
    GetPlanStatusAction,
    PassThroughAction,
]

# Tool name -> action model for the closed orchestrator set.
ORCHESTRATOR_ACTIONS: Dict[str, Type[_ActionModel]] = {
    "create_task_plan": CreatePlanAction,
    "modify_plan": ModifyPlanAction,
    "start_agent": StartAgentAction,
    "monitor_agent": MonitorAgentAction,
    "intervene_agent": InterveneAgentAction,
    "cancel_agent": CancelAgentAction,
    "mark_task_complete": MarkTaskCompleteAction,
    "mark_task_failed": MarkTaskFailedAction,
    "store_memory": StoreMemoryAction,
    "respond_to_user": RespondToUserAction,
    "get_plan_status": GetPlanStatusAction,
}

ORCHESTRATOR_ONLY_TOOL_IDS = frozenset(ORCHESTRATOR_ACTIONS)

ALL_ACTION_TYPES = tuple(ORCHESTRATOR_ACTIONS.values()) + (PassThroughAction,)


def parse_action(name: str, args: Optional[Dict[str, Any]]) -> OrchestratorAction:
    """Parse a tool call into an action.

    Raises:
        pydantic.ValidationError: If an orchestrator action's arguments are invalid
    """
    args = dict(args or {})
    model = ORCHESTRATOR_ACTIONS.get(name)
    if model is None:
        return PassThroughAction(tool_name=name, args=args)
    args.pop("tool", None)
    return model.model_validate(args)


__all__ = [
    "TaskInput",
    "CreatePlanAction",
    "ModifyPlanAction",
    "StartAgentAction",
    "MonitorAgentAction",
    "InterveneAgentAction",
    "CancelAgentAction",
    "MarkTaskCompleteAction",
    "MarkTaskFailedAction",
    "StoreMemoryAction",
    "RespondToUserAction",
    "GetPlanStatusAction",
    "PassThroughAction",
    "OrchestratorAction",
    "ORCHESTRATOR_ACTIONS",
    "ORCHESTRATOR_ONLY_TOOL_IDS",
    "ALL_ACTION_TYPES",
    "parse_action",
]
