"""Routing logic for the control loop graph."""

from __future__ import annotations

import logging
from typing import Literal

from langchain_core.messages import AIMessage

from assistantOrchestrator.orchestrator.graph.state import OrchestrationState
from assistantOrchestrator.utils.logging_utils import log_routing_decision

LOGGER = logging.getLogger(__name__)


def route_after_oracle(state: OrchestrationState) -> Literal["dispatch", "reap", "end"]:
    """Route after the oracle turn.

    Returns:
        "end": the oracle gave a final plain-text answer
        "dispatch": the oracle requested tool calls
        "reap": narration while a plan is running, loop back
    """
    if state.get("final_response") is not None:
        decision, reason = "end", "final answer without tool calls"
    else:
        messages = state.get("messages", [])
        last = messages[-1] if messages else None
        if isinstance(last, AIMessage) and last.tool_calls:
            names = ", ".join(tc["name"] for tc in last.tool_calls)
            decision, reason = "dispatch", f"{len(last.tool_calls)} tool call(s): {names}"
        else:
            decision, reason = "reap", "narration, plan still running"
    log_routing_decision(LOGGER, "oracle", decision, reason)
    return decision


def route_after_dispatch(state: OrchestrationState) -> Literal["reap", "end"]:
    if state.get("responded"):
        decision, reason = "end", "respond_to_user executed"
    else:
        decision, reason = "reap", "tool results returned to the loop"
    log_routing_decision(LOGGER, "dispatch", decision, reason)
    return decision


__all__ = ["route_after_oracle", "route_after_dispatch"]
