"""Oracle node - one streamed decision turn of the control loop.

Oracle failures are fatal for the run, so this node has no error boundary:
a provider error surfaces as ``OracleError`` and an orphaned tool result in
the history surfaces as ``CorruptedHistoryError``.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Callable, Dict, List

from langchain_core.messages import AIMessage, SystemMessage
from langchain_core.runnables import RunnableConfig

from assistantOrchestrator.context.message_utils import validate_message_sequence
from assistantOrchestrator.domain.models import RunMode, new_id
from assistantOrchestrator.orchestrator.context import get_run_context
from assistantOrchestrator.orchestrator.graph.state import OrchestrationState
from assistantOrchestrator.ports.oracle import DoneChunk, OracleOptions, TokenChunk, ToolCallChunk
from assistantOrchestrator.utils.error_handler import (
    CorruptedHistoryError,
    OracleError,
    OrchestratorError,
    handle_oracle_error,
    is_corrupted_history_error,
)
from assistantOrchestrator.utils.logging_utils import log_error

LOGGER = logging.getLogger(__name__)

CORRUPTED_HISTORY_MESSAGE = (
    "Conversation history was corrupted and has been cleared. Please try your request again."
)


def build_oracle_node() -> Callable:
    """Build the oracle node."""

    async def oracle_node(state: OrchestrationState, config: RunnableConfig) -> dict:
        ctx = get_run_context(config)
        messages = list(state.get("messages", []))
        if state.get("last_error"):
            messages.append(SystemMessage(content=f"Error in the previous step: {state['last_error']}"))
        messages = validate_message_sequence(messages)
        iterations = state.get("iterations", 0)

        options = OracleOptions(
            system_prompt=ctx.system_prompt,
            tools=ctx.tools,
            temperature=ctx.settings.temperature,
            max_tokens=ctx.settings.max_tokens,
        )
        stream_tokens = ctx.mode == RunMode.DIRECT
        content_parts: List[str] = []
        tool_calls: List[Dict[str, Any]] = []

        stream = ctx.oracle.stream(messages, options)
        try:
            async for chunk in stream:
                if isinstance(chunk, TokenChunk):
                    content_parts.append(chunk.text)
                    if stream_tokens:
                        await ctx.emitter.emit("agent.token", {"token": chunk.text})
                elif isinstance(chunk, ToolCallChunk):
                    tool_calls.append({"name": chunk.name, "args": dict(chunk.args), "id": chunk.id or new_id()})
                elif isinstance(chunk, DoneChunk):
                    usage = chunk.usage
                    ctx.run.add_usage(
                        usage.total_tokens,
                        ctx.oracle.calculate_cost(usage.prompt_tokens, usage.completion_tokens),
                    )
        except (asyncio.CancelledError, OrchestratorError):
            raise
        except Exception as e:
            if is_corrupted_history_error(e):
                raise CorruptedHistoryError(str(e), CORRUPTED_HISTORY_MESSAGE) from e
            log_error(LOGGER, e, "oracle stream")
            raise OracleError(f"Oracle stream failed: {e}", handle_oracle_error(e)) from e
        finally:
            aclose = getattr(stream, "aclose", None)
            if aclose is not None:
                await aclose()

        content = "".join(content_parts)
        response = AIMessage(content=content, tool_calls=tool_calls)
        ctx.run_messages.append(response)

        if content and not stream_tokens:
            await ctx.emitter.emit("agent.reasoning", {"content": content})

        update: Dict[str, Any] = {
            "messages": messages + [response],
            "iterations": iterations + 1,
            "last_error": None,
        }
        if not tool_calls and content.strip() and not ctx.plan_active():
            update["final_response"] = content
        LOGGER.info(
            f"Oracle turn {iterations + 1}: {len(tool_calls)} tool call(s), {len(content)} chars"
        )
        return update

    return oracle_node


__all__ = ["CORRUPTED_HISTORY_MESSAGE", "build_oracle_node"]
