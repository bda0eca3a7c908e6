"""Tool menu exclusive to the control loop.

Definitions are OpenAI function-format dicts, the same shape the
tool-invocation port returns for user tools, so the two lists can simply be
concatenated into one menu.
"""

from __future__ import annotations

from typing import Any, Dict, List, Optional, Sequence

from assistantOrchestrator.domain.models import AgentType


def _function(
    name: str,
    description: str,
    properties: Dict[str, Any],
    required: Optional[Sequence[str]] = None,
) -> Dict[str, Any]:
    parameters: Dict[str, Any] = {"type": "object", "properties": properties}
    if required:
        parameters["required"] = list(required)
    return {
        "type": "function",
        "function": {"name": name, "description": description, "parameters": parameters},
    }


_TASK_ITEM = {
    "type": "object",
    "description": "A single task node",
    "properties": {
        "temp_id": {
            "type": "string",
            "description": "Temporary id used to reference this task in dependencies (e.g. \"task_1\")",
        },
        "description": {
            "type": "string",
            "description": "Clear description of what this task should accomplish",
        },
        "agent_type": {
            "type": "string",
            "enum": [t.value for t in AgentType],
            "description": "Which agent type should execute the task",
        },
        "dependencies": {
            "type": "array",
            "items": {"type": "string"},
            "description": "temp_ids of tasks that must complete first",
        },
    },
    "required": ["temp_id", "description", "agent_type"],
}


CREATE_TASK_PLAN_TOOL = _function(
    "create_task_plan",
    "Create a plan (DAG) of tasks to accomplish the user's request.\n"
    "Use this when the request requires multiple steps or coordination between different capabilities.\n"
    "Each task should be assigned to the most appropriate agent type.\n"
    "Tasks with no dependencies can run in parallel.\n"
    "Tasks that depend on other tasks will wait for their dependencies to complete.",
    {
        "reasoning": {"type": "string", "description": "Why this plan structure fits the request"},
        "tasks": {"type": "array", "description": "Tasks in the plan", "items": _TASK_ITEM},
    },
    ["reasoning", "tasks"],
)

MODIFY_PLAN_TOOL = _function(
    "modify_plan",
    "Modify the current task plan. Use this to:\n"
    "- Add new tasks discovered during execution\n"
    "- Remove pending tasks that are no longer needed\n"
    "- Update the description or agent type of a pending task\n"
    "- Replace the dependencies of a pending task",
    {
        "action": {
            "type": "string",
            "enum": ["add", "remove", "update", "reorder"],
            "description": "The type of modification to make",
        },
        "reason": {"type": "string", "description": "Why this modification is needed"},
        "task_id": {"type": "string", "description": "ID of the task to modify (for remove/update/reorder)"},
        "new_task": {
            "type": "object",
            "description": "New task details (for add/update); dependencies must be existing task ids",
        },
        "new_dependencies": {
            "type": "array",
            "items": {"type": "string"},
            "description": "New dependency list (for reorder)",
        },
    },
    ["action", "reason"],
)

START_AGENT_TOOL = _function(
    "start_agent",
    "Spawn a sub-agent to execute a ready task from the plan.\n"
    "The agent gets the tools of its type plus any additional tools you grant.\n"
    "Results of completed dependency tasks are passed to it automatically.",
    {
        "task_id": {"type": "string", "description": "ID of the task to execute"},
        "additional_tools": {
            "type": "array",
            "items": {"type": "string"},
            "description": "Optional additional tool ids to grant this agent",
        },
        "instructions": {"type": "string", "description": "Optional specific instructions for this agent"},
    },
    ["task_id"],
)

MONITOR_AGENT_TOOL = _function(
    "monitor_agent",
    "Check the current state of a sub-agent.\n"
    "Returns its status, recent reasoning steps, tool call count and usage.\n"
    "Use this to decide whether an intervention is needed.",
    {"agent_id": {"type": "string", "description": "ID of the agent to monitor"}},
    ["agent_id"],
)

INTERVENE_AGENT_TOOL = _function(
    "intervene_agent",
    "Intervene in a running sub-agent.\n"
    "Use this when an agent goes off-track, repeats mistakes, is stuck in a loop or misses context.\n\n"
    "Actions:\n"
    "- guide: send guidance to help the agent\n"
    "- redirect: give new instructions and refocus the agent\n"
    "- cancel: stop the agent entirely (use mark_task_failed after)\n\n"
    "Interventions are limited per run.",
    {
        "agent_id": {"type": "string", "description": "ID of the agent to intervene"},
        "action": {"type": "string", "enum": ["guide", "redirect", "cancel"], "description": "Type of intervention"},
        "reason": {"type": "string", "description": "Why intervention is needed"},
        "guidance": {"type": "string", "description": "Message for the agent (for guide/redirect)"},
    },
    ["agent_id", "action", "reason"],
)

CANCEL_AGENT_TOOL = _function(
    "cancel_agent",
    "Terminate a sub-agent. Its task is marked as cancelled.",
    {
        "agent_id": {"type": "string", "description": "ID of the agent to cancel"},
        "reason": {"type": "string", "description": "Why the agent is being cancelled"},
    },
    ["agent_id", "reason"],
)

MARK_TASK_COMPLETE_TOOL = _function(
    "mark_task_complete",
    "Mark a task as successfully completed.\n"
    "The result is passed as context to dependent tasks.",
    {
        "task_id": {"type": "string", "description": "ID of the task to mark complete"},
        "result": {"type": "object", "description": "The result/output of the task"},
        "summary": {"type": "string", "description": "Brief summary of what was accomplished"},
    },
    ["task_id", "summary"],
)

MARK_TASK_FAILED_TOOL = _function(
    "mark_task_failed",
    "Mark a task as failed.\n"
    "With should_retry the task goes back to pending so you can start a new agent for it; "
    "retries are limited per task. Consider modifying the plan to work around a permanent failure.",
    {
        "task_id": {"type": "string", "description": "ID of the task to mark failed"},
        "error": {"type": "string", "description": "Why the task failed"},
        "should_retry": {"type": "boolean", "description": "Whether to retry this task with a different approach"},
        "retry_strategy": {"type": "string", "description": "If retrying, what approach to try next"},
    },
    ["task_id", "error"],
)

STORE_MEMORY_TOOL = _function(
    "store_memory",
    "Store important information in long-term memory.\n"
    "Remember user preferences, facts the user shared, key decisions and recurring patterns.\n"
    "Do not store transient task details or obvious context.",
    {
        "content": {"type": "string", "description": "The information to remember"},
        "category": {
            "type": "string",
            "enum": ["preference", "fact", "decision", "pattern", "general"],
            "description": "Category of the memory",
        },
        "metadata": {"type": "object", "description": "Optional additional metadata"},
    },
    ["content", "category"],
)

RESPOND_TO_USER_TOOL = _function(
    "respond_to_user",
    "Send the final response to the user and end the run.\n"
    "Use this when all tasks are complete or when you can answer directly.",
    {
        "content": {"type": "string", "description": "The response message to send to the user"},
        "include_artifacts": {"type": "boolean", "description": "Whether to include artifacts produced by sub-agents"},
        "artifact_ids": {
            "type": "array",
            "items": {"type": "string"},
            "description": "Specific artifact ids to include (if not all)",
        },
    },
    ["content"],
)

GET_PLAN_STATUS_TOOL = _function(
    "get_plan_status",
    "Get the current status of the task plan: all tasks, ready tasks and running agents.",
    {},
)


ORCHESTRATOR_TOOLS: List[Dict[str, Any]] = [
    CREATE_TASK_PLAN_TOOL,
    MODIFY_PLAN_TOOL,
    START_AGENT_TOOL,
    MONITOR_AGENT_TOOL,
    INTERVENE_AGENT_TOOL,
    CANCEL_AGENT_TOOL,
    MARK_TASK_COMPLETE_TOOL,
    MARK_TASK_FAILED_TOOL,
    STORE_MEMORY_TOOL,
    RESPOND_TO_USER_TOOL,
    GET_PLAN_STATUS_TOOL,
]


__all__ = [
    "ORCHESTRATOR_TOOLS",
    "CREATE_TASK_PLAN_TOOL",
    "MODIFY_PLAN_TOOL",
    "START_AGENT_TOOL",
    "MONITOR_AGENT_TOOL",
    "INTERVENE_AGENT_TOOL",
    "CANCEL_AGENT_TOOL",
    "MARK_TASK_COMPLETE_TOOL",
    "MARK_TASK_FAILED_TOOL",
    "STORE_MEMORY_TOOL",
    "RESPOND_TO_USER_TOOL",
    "GET_PLAN_STATUS_TOOL",
]
