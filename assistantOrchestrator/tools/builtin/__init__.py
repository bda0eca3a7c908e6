"""Built-in tools."""

from .now import get_current_time
from .session import SESSION_TOOL_NAMES, SessionRecorder, build_session_tools

__all__ = [
    "get_current_time",
    "SESSION_TOOL_NAMES",
    "SessionRecorder",
    "build_session_tools",
]
