"""Tools served to the orchestrator and sub-agents."""

from .builtin import (
    SESSION_TOOL_NAMES,
    SessionRecorder,
    build_session_tools,
    get_current_time,
)

__all__ = [
    "SESSION_TOOL_NAMES",
    "SessionRecorder",
    "build_session_tools",
    "get_current_time",
]
