"""Tool whitelists per sub-agent type.

These are base sets; the orchestrator can grant extra tools per spawn
through ``additional_tools``. Orchestrator-only tools and memory-write tools
are never reachable from a sub-agent whatever it is granted.
"""

from __future__ import annotations

from typing import Dict, Iterable, List

from assistantOrchestrator.domain.actions import ORCHESTRATOR_ONLY_TOOL_IDS
from assistantOrchestrator.domain.models import AgentType

MEMORY_READ_TOOLS = ("recall", "kg_query")
MEMORY_WRITE_TOOLS = ("remember", "kg_create_entity", "kg_create_relation", "store_memory")

AGENT_TOOL_SCOPES: Dict[AgentType, List[str]] = {
    AgentType.GENERAL: [
        "recall",
        "kg_query",
        "get_current_time",
        "web_search",
    ],
    AgentType.RESEARCH: [
        "recall",
        "kg_query",
        "web_search",
        "web_fetch",
        "web_scrape",
        "summarize",
        "extract_entities",
        "compare_sources",
    ],
    AgentType.CODING: [
        "recall",
        "file_read",
        "file_write",
        "file_list",
        "file_delete",
        "code_execute",
        "code_analyze",
        "code_format",
        "code_lint",
        "git_status",
        "git_diff",
        "git_commit",
        "terminal_execute",
    ],
    AgentType.SCHEDULING: [
        "recall",
        "get_current_time",
        "calendar_list",
        "calendar_get",
        "calendar_create",
        "calendar_update",
        "calendar_delete",
        "reminder_list",
        "reminder_create",
        "reminder_update",
        "reminder_delete",
    ],
    AgentType.PRODUCTIVITY: [
        "recall",
        "get_current_time",
        "task_list",
        "task_get",
        "task_create",
        "task_update",
        "task_delete",
        "task_complete",
        "note_list",
        "note_get",
        "note_create",
        "note_update",
        "note_delete",
        "note_search",
        "document_create",
        "document_update",
    ],
    AgentType.MESSAGING: [
        "recall",
        "email_list",
        "email_get",
        "email_send",
        "email_draft",
        "email_reply",
        "sms_send",
        "notification_send",
        "contact_search",
        "contact_get",
    ],
}

AGENT_CAPABILITIES: Dict[AgentType, str] = {
    AgentType.GENERAL: (
        "You are a general-purpose assistant. You can recall information from memory, "
        "do calculations, check the current time and run basic web searches. "
        "Handle tasks that do not fit a more specialized agent."
    ),
    AgentType.RESEARCH: (
        "You are a research specialist. You can search the web, fetch and read pages, "
        "summarize content, extract entities and compare sources. "
        "Focus on accurate and well-sourced information."
    ),
    AgentType.CODING: (
        "You are a coding agent. You can read and write files, execute and analyze code, "
        "run terminal commands and inspect git state. "
        "Work autonomously and verify your changes before reporting."
    ),
    AgentType.SCHEDULING: (
        "You are a scheduling specialist. You can manage calendar events and reminders "
        "and do time calculations. Avoid conflicts and confirm times explicitly."
    ),
    AgentType.PRODUCTIVITY: (
        "You are a productivity specialist. You can manage tasks, notes and documents. "
        "Keep things organized and report exactly what changed."
    ),
    AgentType.MESSAGING: (
        "You are a messaging specialist. You can read, draft and send email, send SMS "
        "and notifications, and look up contacts. Keep communication clear and professional."
    ),
}


def is_memory_write_tool(tool_id: str) -> bool:
    return tool_id in MEMORY_WRITE_TOOLS


def _is_reserved(tool_id: str) -> bool:
    return tool_id in ORCHESTRATOR_ONLY_TOOL_IDS or is_memory_write_tool(tool_id)


def get_agent_tools(agent_type: AgentType, additional_tools: Iterable[str] = ()) -> List[str]:
    """Base scope plus granted tools, without orchestrator-only or memory-write tools."""
    tools: List[str] = []
    for tool_id in list(AGENT_TOOL_SCOPES.get(AgentType(agent_type), [])) + list(additional_tools):
        if tool_id not in tools and not _is_reserved(tool_id):
            tools.append(tool_id)
    return tools


def can_agent_use_tool(agent_type: AgentType, tool_id: str, additional_tools: Iterable[str] = ()) -> bool:
    if _is_reserved(tool_id):
        return False
    return tool_id in get_agent_tools(agent_type, additional_tools)


def describe_agent_tool_access(agent_type: AgentType, additional_tools: Iterable[str] = ()) -> str:
    tools = get_agent_tools(agent_type, additional_tools)
    return f"{AGENT_CAPABILITIES[AgentType(agent_type)]}\n\nAvailable tools: {', '.join(tools)}"


__all__ = [
    "AGENT_TOOL_SCOPES",
    "AGENT_CAPABILITIES",
    "MEMORY_READ_TOOLS",
    "MEMORY_WRITE_TOOLS",
    "is_memory_write_tool",
    "get_agent_tools",
    "can_agent_use_tool",
    "describe_agent_tool_access",
]
