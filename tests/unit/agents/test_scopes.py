"""Unit tests for sub-agent tool scopes and prompts."""

import pytest

from assistantOrchestrator.agents.prompts import (
    build_agent_system_prompt,
    build_initial_task_message,
    format_guidance,
)
from assistantOrchestrator.agents.scopes import (
    AGENT_TOOL_SCOPES,
    can_agent_use_tool,
    describe_agent_tool_access,
    get_agent_tools,
)
from assistantOrchestrator.domain.actions import ORCHESTRATOR_ONLY_TOOL_IDS
from assistantOrchestrator.domain.models import AgentType


@pytest.mark.parametrize("agent_type", list(AgentType))
def test_every_type_has_scope_without_reserved_tools(agent_type):
    tools = get_agent_tools(agent_type)
    assert tools
    assert not set(tools) & ORCHESTRATOR_ONLY_TOOL_IDS
    assert "remember" not in tools


def test_additional_tools_are_appended_once():
    tools = get_agent_tools(AgentType.GENERAL, ["web_search", "email_send"])
    assert tools.count("web_search") == 1
    assert tools[-1] == "email_send"


def test_reserved_tools_never_granted():
    tools = get_agent_tools(AgentType.RESEARCH, ["respond_to_user", "store_memory", "kg_create_entity"])
    assert tools == AGENT_TOOL_SCOPES[AgentType.RESEARCH]
    assert not can_agent_use_tool(AgentType.RESEARCH, "create_task_plan", ["create_task_plan"])


def test_can_agent_use_tool():
    assert can_agent_use_tool(AgentType.SCHEDULING, "calendar_create")
    assert not can_agent_use_tool(AgentType.SCHEDULING, "email_send")
    assert can_agent_use_tool(AgentType.SCHEDULING, "email_send", ["email_send"])


def test_agent_type_accepts_string():
    assert get_agent_tools("messaging") == AGENT_TOOL_SCOPES[AgentType.MESSAGING]
    assert "Available tools: recall" in describe_agent_tool_access("messaging")


def test_system_prompt_sections():
    prompt = build_agent_system_prompt(AgentType.CODING, "Fix the bug", ["file_read"], "Do not push")
    assert "## Your Assigned Task\nFix the bug" in prompt
    assert "## Available Tools\nfile_read" in prompt
    assert "## Special Instructions\nDo not push" in prompt

    assert "(none)" in build_agent_system_prompt(AgentType.GENERAL, "x", [])


def test_initial_task_message():
    message = build_initial_task_message("Book a table", "## Result from: Find place\nLuigi's")
    assert message.startswith("Please complete this task: Book a table")
    assert "## Context from Previous Tasks" in message


def test_format_guidance():
    assert format_guidance("be brief") == "[ORCHESTRATOR GUIDANCE]: be brief"
    assert format_guidance("switch", redirect=True) == "[ORCHESTRATOR GUIDANCE]: [REDIRECT] switch"
