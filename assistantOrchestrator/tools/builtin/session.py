"""Session bookkeeping tools used as run side channels.

The control loop calls ``session_start`` / ``session_end`` around every run
and ``session_capture_file`` after successful file operations. These tools
are registered hidden: they are invoked by the orchestrator itself and never
offered to a model.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Dict, List, Optional

from langchain_core.tools import BaseTool, tool

from assistantOrchestrator.domain.models import utcnow

LOGGER = logging.getLogger(__name__)


@dataclass
class SessionRecord:
    run_id: str
    started_at: datetime = field(default_factory=utcnow)
    ended_at: Optional[datetime] = None
    summary: str = ""
    files: List[Dict[str, str]] = field(default_factory=list)


class SessionRecorder:
    """In-memory session log keyed by run id."""

    def __init__(self) -> None:
        self._sessions: Dict[str, SessionRecord] = {}

    def start(self, run_id: str) -> SessionRecord:
        record = self._sessions.setdefault(run_id, SessionRecord(run_id=run_id))
        LOGGER.debug(f"Session started: {run_id}")
        return record

    def end(self, run_id: str, summary: str = "") -> SessionRecord:
        record = self._sessions.setdefault(run_id, SessionRecord(run_id=run_id))
        record.ended_at = utcnow()
        record.summary = summary
        LOGGER.debug(f"Session ended: {run_id} ({len(record.files)} file(s) captured)")
        return record

    def capture_file(self, run_id: str, file_path: str, action: str) -> SessionRecord:
        record = self._sessions.setdefault(run_id, SessionRecord(run_id=run_id))
        record.files.append({"file_path": file_path, "action": action})
        return record

    def get(self, run_id: str) -> Optional[SessionRecord]:
        return self._sessions.get(run_id)


def build_session_tools(recorder: SessionRecorder) -> List[BaseTool]:
    """Create the session side-channel tools bound to ``recorder``."""

    @tool
    def session_start(run_id: str) -> str:
        """Open the bookkeeping session of a run."""
        recorder.start(run_id)
        return f"Session started for run {run_id}"

    @tool
    def session_end(run_id: str, summary: str = "") -> str:
        """Close the bookkeeping session of a run with a short summary."""
        recorder.end(run_id, summary)
        return f"Session ended for run {run_id}"

    @tool
    def session_capture_file(run_id: str, file_path: str, action: str = "modify") -> str:
        """Record a file touched during a run (create, modify, delete, rename or copy)."""
        recorder.capture_file(run_id, file_path, action)
        return f"Captured {action} of {file_path}"

    return [session_start, session_end, session_capture_file]


SESSION_TOOL_NAMES = ("session_start", "session_end", "session_capture_file")

__all__ = [
    "SESSION_TOOL_NAMES",
    "SessionRecord",
    "SessionRecorder",
    "build_session_tools",
]
