"""Graph builder for the control loop.

    START -> reap -> context -> oracle -> dispatch -> reap -> ...
                                  |           |
                                  +--> END <--+

``reap`` settles finished sub-agents and enforces the iteration cap,
``context`` folds the live window when it outgrows the model budget,
``oracle`` takes one decision turn and ``dispatch`` executes its tool calls.
The graph holds no run objects; each invocation carries its ``RunContext``
in ``config["configurable"]``.
"""

from __future__ import annotations

import logging

from langgraph.graph import END, START, StateGraph

from assistantOrchestrator.orchestrator.graph.nodes import (
    build_context_node,
    build_dispatch_node,
    build_oracle_node,
    build_reap_node,
)
from assistantOrchestrator.orchestrator.graph.routing import route_after_dispatch, route_after_oracle
from assistantOrchestrator.orchestrator.graph.state import OrchestrationState
from assistantOrchestrator.orchestrator.handlers import ActionDispatcher

LOGGER = logging.getLogger(__name__)


def build_orchestrator_graph(*, dispatcher: ActionDispatcher):
    """Build the control loop graph.

    Args:
        dispatcher: Action dispatcher used by the dispatch node

    Returns:
        Compiled LangGraph application
    """
    # ========== Build Nodes ==========
    graph = StateGraph(OrchestrationState)
    graph.add_node("reap", build_reap_node())
    graph.add_node("context", build_context_node())
    graph.add_node("oracle", build_oracle_node())
    graph.add_node("dispatch", build_dispatch_node(dispatcher=dispatcher))

    # ========== Routing ==========
    graph.add_edge(START, "reap")
    graph.add_edge("reap", "context")
    graph.add_edge("context", "oracle")
    graph.add_conditional_edges(
        "oracle",
        route_after_oracle,
        {
            "dispatch": "dispatch",
            "reap": "reap",
            "end": END,
        },
    )
    graph.add_conditional_edges(
        "dispatch",
        route_after_dispatch,
        {
            "reap": "reap",
            "end": END,
        },
    )

    # ========== Compile ==========
    LOGGER.debug("Control loop graph compiled")
    return graph.compile()


__all__ = ["build_orchestrator_graph"]
