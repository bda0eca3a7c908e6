"""Control loop graph."""

from .builder import build_orchestrator_graph
from .state import OrchestrationState

__all__ = ["build_orchestrator_graph", "OrchestrationState"]
