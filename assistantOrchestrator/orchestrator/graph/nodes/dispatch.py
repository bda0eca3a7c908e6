"""Dispatch node - executes the oracle's tool calls in order.

Every tool call gets exactly one ToolMessage. Once ``respond_to_user``
succeeds the run is over, and any calls after it in the same turn are
answered with a skip result instead of being executed.
"""

from __future__ import annotations

import json
import logging
from typing import Any, Callable, Dict, Optional

from langchain_core.messages import AIMessage, ToolMessage
from langchain_core.runnables import RunnableConfig

from assistantOrchestrator.domain.models import new_id
from assistantOrchestrator.orchestrator.context import get_run_context
from assistantOrchestrator.orchestrator.graph.state import OrchestrationState
from assistantOrchestrator.orchestrator.handlers import ActionDispatcher
from assistantOrchestrator.utils.error_handler import with_error_boundary

LOGGER = logging.getLogger(__name__)

RESPOND_TOOL = "respond_to_user"
SKIPPED_AFTER_RESPONSE = {"success": False, "error": "Skipped: the run ended with respond_to_user"}


def build_dispatch_node(*, dispatcher: ActionDispatcher) -> Callable:
    """Build the dispatch node.

    Args:
        dispatcher: Action dispatcher shared by all runs

    Returns:
        Async node function over OrchestrationState
    """

    @with_error_boundary("dispatch")
    async def dispatch_node(state: OrchestrationState, config: RunnableConfig) -> dict:
        ctx = get_run_context(config)
        messages = list(state.get("messages", []))
        last = messages[-1] if messages else None
        if not isinstance(last, AIMessage) or not last.tool_calls:
            return {}

        response: Optional[str] = None
        for call in last.tool_calls:
            name = call.get("name", "")
            args = call.get("args") or {}
            call_id = call.get("id") or new_id()

            if response is not None:
                payload: Dict[str, Any] = dict(SKIPPED_AFTER_RESPONSE)
            else:
                await ctx.emitter.emit("agent.tool_call", {"tool_call_id": call_id, "tool": name, "input": args})
                payload = await dispatcher.dispatch(ctx, name, args)
                await ctx.emitter.emit(
                    "agent.tool_result",
                    {
                        "tool_call_id": call_id,
                        "tool": name,
                        "success": bool(payload.get("success")),
                        "output": payload,
                    },
                )
                if name == RESPOND_TOOL and payload.get("success"):
                    response = payload.get("content", "")

            tool_message = ToolMessage(
                content=json.dumps(payload, ensure_ascii=False, default=str),
                tool_call_id=call_id,
                name=name,
            )
            messages.append(tool_message)
            ctx.run_messages.append(tool_message)

        update: Dict[str, Any] = {"messages": messages}
        if response is not None:
            update["final_response"] = response
            update["responded"] = True
        return update

    return dispatch_node


__all__ = ["SKIPPED_AFTER_RESPONSE", "build_dispatch_node"]
