"""Retry and intervention guard.

Two privileged escape hatches are rate-limited per run: retrying a task past
a natural failure, and intervening in a running agent. Callers check
``allowed`` immediately before acting and record immediately after; the
``try_*`` helpers perform both under a per-run lock so concurrent task
completions for the same run can never exceed a threshold.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Protocol, Tuple

from assistantOrchestrator.config.settings import GuardSettings
from assistantOrchestrator.utils.logging_utils import log_guard_decision

LOGGER = logging.getLogger(__name__)

RETRY_WARNING_RATIO = 0.66
INTERVENTION_WARNING_RATIO = 0.8


@dataclass(frozen=True)
class GuardDecision:
    allowed: bool
    reason: Optional[str] = None


@dataclass(frozen=True)
class RetryRecord:
    new_count: int
    is_last_retry: bool
    max_retries: int


@dataclass(frozen=True)
class InterventionRecord:
    new_count: int
    is_near_limit: bool
    is_at_limit: bool
    max_interventions: int


@dataclass(frozen=True)
class RunHealth:
    run_id: str
    total_interventions: int
    max_interventions: int
    task_retries: Dict[str, int]
    max_retries_per_task: int
    warnings: List[str] = field(default_factory=list)

    @property
    def healthy(self) -> bool:
        return not self.warnings


class GuardCounters(Protocol):
    """Counter backend; swap in a shared cache when runs span processes."""

    async def get_retry(self, run_id: str, task_id: str) -> int:
        ...

    async def incr_retry(self, run_id: str, task_id: str) -> int:
        ...

    async def all_retries(self, run_id: str) -> Dict[str, int]:
        ...

    async def get_interventions(self, run_id: str) -> int:
        ...

    async def incr_interventions(self, run_id: str) -> int:
        ...

    async def reset(self, run_id: str) -> None:
        ...


class InMemoryGuardCounters:
    def __init__(self) -> None:
        self._retries: Dict[str, Dict[str, int]] = {}
        self._interventions: Dict[str, int] = {}

    async def get_retry(self, run_id: str, task_id: str) -> int:
        return self._retries.get(run_id, {}).get(task_id, 0)

    async def incr_retry(self, run_id: str, task_id: str) -> int:
        counters = self._retries.setdefault(run_id, {})
        counters[task_id] = counters.get(task_id, 0) + 1
        return counters[task_id]

    async def all_retries(self, run_id: str) -> Dict[str, int]:
        return dict(self._retries.get(run_id, {}))

    async def get_interventions(self, run_id: str) -> int:
        return self._interventions.get(run_id, 0)

    async def incr_interventions(self, run_id: str) -> int:
        self._interventions[run_id] = self._interventions.get(run_id, 0) + 1
        return self._interventions[run_id]

    async def reset(self, run_id: str) -> None:
        self._retries.pop(run_id, None)
        self._interventions.pop(run_id, None)


class LoopGuard:
    """Per-run retry / intervention thresholds."""

    def __init__(self, settings: Optional[GuardSettings] = None, counters: Optional[GuardCounters] = None):
        settings = settings or GuardSettings()
        self.max_retries_per_task = settings.max_retries_per_task
        self.max_total_interventions = settings.max_total_interventions
        self._counters: GuardCounters = counters or InMemoryGuardCounters()
        self._locks: Dict[str, asyncio.Lock] = {}

    def _lock(self, run_id: str) -> asyncio.Lock:
        lock = self._locks.get(run_id)
        if lock is None:
            lock = self._locks[run_id] = asyncio.Lock()
        return lock

    # ========== Task retries ==========

    async def can_retry_task(self, run_id: str, task_id: str) -> GuardDecision:
        count = await self._counters.get_retry(run_id, task_id)
        if count >= self.max_retries_per_task:
            decision = GuardDecision(
                allowed=False,
                reason=(
                    f"Task has reached maximum retry limit ({self.max_retries_per_task}). "
                    "Consider modifying the plan or using a different approach."
                ),
            )
        else:
            decision = GuardDecision(allowed=True)
        log_guard_decision(LOGGER, f"retry {task_id[:8]} ({count}/{self.max_retries_per_task})", decision.allowed, decision.reason or "")
        return decision

    async def record_task_retry(self, run_id: str, task_id: str) -> RetryRecord:
        new_count = await self._counters.incr_retry(run_id, task_id)
        return RetryRecord(
            new_count=new_count,
            is_last_retry=new_count >= self.max_retries_per_task,
            max_retries=self.max_retries_per_task,
        )

    async def try_retry_task(self, run_id: str, task_id: str) -> Tuple[GuardDecision, Optional[RetryRecord]]:
        """Check and record a retry atomically with respect to the run."""
        async with self._lock(run_id):
            decision = await self.can_retry_task(run_id, task_id)
            if not decision.allowed:
                return decision, None
            return decision, await self.record_task_retry(run_id, task_id)

    # ========== Interventions ==========

    async def can_intervene(self, run_id: str) -> GuardDecision:
        count = await self._counters.get_interventions(run_id)
        if count >= self.max_total_interventions:
            decision = GuardDecision(
                allowed=False,
                reason=(
                    f"Run has reached maximum intervention limit ({self.max_total_interventions}). "
                    "This may indicate a fundamental issue with the task or approach."
                ),
            )
        else:
            decision = GuardDecision(allowed=True)
        log_guard_decision(LOGGER, f"intervention ({count}/{self.max_total_interventions})", decision.allowed, decision.reason or "")
        return decision

    async def record_intervention(self, run_id: str) -> InterventionRecord:
        new_count = await self._counters.incr_interventions(run_id)
        limit = self.max_total_interventions
        return InterventionRecord(
            new_count=new_count,
            is_near_limit=limit > 0 and new_count >= limit * INTERVENTION_WARNING_RATIO,
            is_at_limit=new_count >= limit,
            max_interventions=limit,
        )

    async def try_intervene(self, run_id: str) -> Tuple[GuardDecision, Optional[InterventionRecord]]:
        """Check and record an intervention atomically with respect to the run."""
        async with self._lock(run_id):
            decision = await self.can_intervene(run_id)
            if not decision.allowed:
                return decision, None
            return decision, await self.record_intervention(run_id)

    # ========== Health and config ==========

    async def get_run_health(self, run_id: str) -> RunHealth:
        retries = await self._counters.all_retries(run_id)
        interventions = await self._counters.get_interventions(run_id)
        warnings: List[str] = []

        for task_id, count in retries.items():
            if self.max_retries_per_task and count >= self.max_retries_per_task * RETRY_WARNING_RATIO:
                warnings.append(f"Task {task_id} has used {count}/{self.max_retries_per_task} retries")

        if self.max_total_interventions and interventions >= self.max_total_interventions * INTERVENTION_WARNING_RATIO:
            warnings.append(
                f"Run has used {interventions}/{self.max_total_interventions} interventions"
            )

        return RunHealth(
            run_id=run_id,
            total_interventions=interventions,
            max_interventions=self.max_total_interventions,
            task_retries=retries,
            max_retries_per_task=self.max_retries_per_task,
            warnings=warnings,
        )

    def get_config(self) -> Dict[str, int]:
        return {
            "max_retries_per_task": self.max_retries_per_task,
            "max_total_interventions": self.max_total_interventions,
        }

    def update_config(self, max_retries_per_task: Optional[int] = None, max_total_interventions: Optional[int] = None) -> None:
        if max_retries_per_task is not None:
            self.max_retries_per_task = max_retries_per_task
        if max_total_interventions is not None:
            self.max_total_interventions = max_total_interventions
        LOGGER.info(f"Guard configuration updated: {self.get_config()}")

    async def reset_run(self, run_id: str) -> None:
        await self._counters.reset(run_id)
        self._locks.pop(run_id, None)


__all__ = [
    "GuardDecision",
    "RetryRecord",
    "InterventionRecord",
    "RunHealth",
    "GuardCounters",
    "InMemoryGuardCounters",
    "LoopGuard",
]
