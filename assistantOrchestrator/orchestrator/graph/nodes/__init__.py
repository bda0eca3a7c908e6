"""Control loop graph nodes."""

from .context import build_context_node
from .dispatch import build_dispatch_node
from .oracle import build_oracle_node
from .reap import build_reap_node, reap_terminated_agents

__all__ = [
    "build_reap_node",
    "build_context_node",
    "build_oracle_node",
    "build_dispatch_node",
    "reap_terminated_agents",
]
