"""Graph state for the control loop.

Live run objects (plan, agents, guard, run status) are not kept here; they
belong to the per-run ``RunContext``. The graph state only carries what the
routing functions need to decide the next step.
"""

from __future__ import annotations

from typing import List, Optional, TypedDict

from langchain_core.messages import BaseMessage


class OrchestrationState(TypedDict, total=False):
    """State for one control loop run."""

    # ========== Conversation ==========
    messages: List[BaseMessage]
    """Model-facing window. Replaced wholesale when context is folded."""

    # ========== Loop Control ==========
    iterations: int
    """Oracle turns taken so far."""

    max_iterations: int

    # ========== Outcome ==========
    final_response: Optional[str]
    """Text returned to the user once the run ends."""

    responded: bool
    """True once respond_to_user has been dispatched."""

    summary_requested: bool
    """True once the plan-complete summary prompt has been appended."""

    last_error: Optional[str]
    """Most recent non-fatal node failure."""


__all__ = ["OrchestrationState"]
