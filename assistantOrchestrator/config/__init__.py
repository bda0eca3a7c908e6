"""Configuration package."""

from .settings import (
    ContextSettings,
    GuardSettings,
    HistorySettings,
    ModelSettings,
    ObservabilitySettings,
    OrchestratorSettings,
    Settings,
    SubAgentSettings,
    get_settings,
)

__all__ = [
    "ContextSettings",
    "GuardSettings",
    "HistorySettings",
    "ModelSettings",
    "ObservabilitySettings",
    "OrchestratorSettings",
    "Settings",
    "SubAgentSettings",
    "get_settings",
]
