"""Retry / intervention guard."""

from .loop_guard import (
    GuardCounters,
    GuardDecision,
    InMemoryGuardCounters,
    InterventionRecord,
    LoopGuard,
    RetryRecord,
    RunHealth,
)

__all__ = [
    "GuardCounters",
    "GuardDecision",
    "InMemoryGuardCounters",
    "InterventionRecord",
    "LoopGuard",
    "RetryRecord",
    "RunHealth",
]
