"""Context node - keeps the live window inside the model budget."""

from __future__ import annotations

import logging
from typing import Callable

from langchain_core.runnables import RunnableConfig

from assistantOrchestrator.orchestrator.context import get_run_context
from assistantOrchestrator.orchestrator.graph.state import OrchestrationState
from assistantOrchestrator.utils.error_handler import with_error_boundary

LOGGER = logging.getLogger(__name__)


def build_context_node() -> Callable:
    """Build the context management node.

    Folded turns are replaced in the live window only; the run transcript
    that gets persisted keeps every message.
    """

    @with_error_boundary("context")
    async def context_node(state: OrchestrationState, config: RunnableConfig) -> dict:
        ctx = get_run_context(config)
        if ctx.context_manager is None:
            return {}

        managed = await ctx.context_manager.manage_context(
            state.get("messages", []),
            ctx.oracle.get_model(),
            ctx.system_prompt,
            ctx.tools,
        )
        if managed.strategy == "none":
            return {}

        LOGGER.info(f"Context {managed.strategy}: {managed.before_tokens} -> {managed.after_tokens} tokens")
        await ctx.emitter.emit(
            "orchestrator.status",
            {
                "status": ctx.run.status.value,
                "message": f"Context compressed ({managed.before_tokens} -> {managed.after_tokens} tokens)",
            },
        )
        return {"messages": managed.messages}

    return context_node


__all__ = ["build_context_node"]
