"""Runtime wiring."""

from .app import OrchestratorApp, build_orchestrator_app, build_orchestrator_service
from .model_resolver import build_chat_model, strip_provider_prefix

__all__ = [
    "OrchestratorApp",
    "build_orchestrator_app",
    "build_orchestrator_service",
    "build_chat_model",
    "strip_provider_prefix",
]
