"""System prompts and briefing messages for sub-agents."""

from __future__ import annotations

from typing import Dict, Iterable, Optional

from assistantOrchestrator.agents.scopes import AGENT_CAPABILITIES
from assistantOrchestrator.domain.models import AgentType

_FOCUS: Dict[AgentType, str] = {
    AgentType.GENERAL: "Be concise and stay inside the assigned task.",
    AgentType.RESEARCH: (
        "Prefer primary sources, cross-check facts that matter, and cite where each "
        "finding came from."
    ),
    AgentType.CODING: (
        "Read before you write. Keep changes minimal and run the relevant checks "
        "before declaring the task done."
    ),
    AgentType.SCHEDULING: (
        "Always state dates with the day of week and time zone. Check for conflicts "
        "before creating or moving events."
    ),
    AgentType.PRODUCTIVITY: "Reuse existing lists and notes instead of creating duplicates.",
    AgentType.MESSAGING: (
        "Draft before sending unless the task explicitly says to send. Never invent "
        "recipients or addresses."
    ),
}

_COMMON_GUIDELINES = """## Guidelines
1. Work only on the task you were given
2. Use tools when they help; do not guess results a tool can tell you
3. If a tool fails, try a different approach before giving up
4. Follow any guidance from the orchestrator as soon as you see it

## When You Are Done
Reply with a final message (no tool calls) that summarizes what you did, the
concrete results, and any problems you could not resolve. The orchestrator only
sees this final message, not your tool calls."""


def get_agent_system_prompt(agent_type: AgentType) -> str:
    agent_type = AgentType(agent_type)
    return f"{AGENT_CAPABILITIES[agent_type]}\n\n{_FOCUS[agent_type]}\n\n{_COMMON_GUIDELINES}"


def build_agent_system_prompt(
    agent_type: AgentType,
    task_description: str,
    available_tools: Iterable[str],
    special_instructions: Optional[str] = None,
) -> str:
    """Role prompt plus the assigned task, tool list and operator instructions."""
    tools = list(available_tools)
    parts = [
        get_agent_system_prompt(agent_type),
        f"## Your Assigned Task\n{task_description}",
        f"## Available Tools\n{', '.join(tools) if tools else '(none)'}",
    ]
    if special_instructions:
        parts.append(f"## Special Instructions\n{special_instructions}")
    return "\n\n".join(parts)


def build_initial_task_message(
    task_description: str,
    upstream_context: Optional[str] = None,
    instructions: Optional[str] = None,
) -> str:
    content = f"Please complete this task: {task_description}"
    if upstream_context:
        content += f"\n\n## Context from Previous Tasks\n{upstream_context}"
    if instructions:
        content += f"\n\n## Additional Instructions\n{instructions}"
    return content


def format_guidance(guidance: str, redirect: bool = False) -> str:
    prefix = "[REDIRECT] " if redirect else ""
    return f"[ORCHESTRATOR GUIDANCE]: {prefix}{guidance}"


__all__ = [
    "get_agent_system_prompt",
    "build_agent_system_prompt",
    "build_initial_task_message",
    "format_guidance",
]
