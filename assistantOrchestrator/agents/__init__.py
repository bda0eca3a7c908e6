"""Sub-agents: tool scopes, prompts, the worker loop and lifecycle management."""

from .manager import AgentHandle, SpawnSpec, SubAgentManager
from .runner import AgentCommand, SubAgentRunner, extract_artifacts
from .scopes import AGENT_CAPABILITIES, AGENT_TOOL_SCOPES, can_agent_use_tool, get_agent_tools

__all__ = [
    "AgentHandle",
    "SpawnSpec",
    "SubAgentManager",
    "AgentCommand",
    "SubAgentRunner",
    "extract_artifacts",
    "AGENT_CAPABILITIES",
    "AGENT_TOOL_SCOPES",
    "can_agent_use_tool",
    "get_agent_tools",
]
