"""Event bus port: pub/sub fan-out of typed stream events."""

from __future__ import annotations

import asyncio
import logging
from collections import defaultdict
from typing import Any, AsyncIterator, Dict, List, Optional, Protocol

from assistantOrchestrator.domain.events import StreamEvent
from assistantOrchestrator.utils.error_handler import best_effort

LOGGER = logging.getLogger(__name__)


class EventBus(Protocol):
    async def publish(self, run_id: str, event: StreamEvent) -> None:
        ...

    def subscribe(self, run_id: str) -> AsyncIterator[StreamEvent]:
        ...


class InMemoryEventBus:
    """Fans each run's events out to every subscriber queue.

    A published event is also kept in the run's history so late subscribers
    and tests can inspect what was emitted.
    """

    def __init__(self, history_limit: int = 10_000) -> None:
        self._subscribers: Dict[str, List[asyncio.Queue]] = defaultdict(list)
        self._history: Dict[str, List[StreamEvent]] = defaultdict(list)
        self._history_limit = history_limit

    async def publish(self, run_id: str, event: StreamEvent) -> None:
        history = self._history[run_id]
        history.append(event)
        if len(history) > self._history_limit:
            del history[: len(history) - self._history_limit]
        for queue in list(self._subscribers.get(run_id, [])):
            queue.put_nowait(event)

    async def subscribe(self, run_id: str) -> AsyncIterator[StreamEvent]:
        """Yield events for ``run_id`` until ``close(run_id)`` is called."""
        queue: asyncio.Queue = asyncio.Queue()
        self._subscribers[run_id].append(queue)
        try:
            while True:
                event = await queue.get()
                if event is None:
                    return
                yield event
        finally:
            if queue in self._subscribers.get(run_id, []):
                self._subscribers[run_id].remove(queue)

    def close(self, run_id: str) -> None:
        for queue in self._subscribers.get(run_id, []):
            queue.put_nowait(None)

    def discard(self, run_id: str) -> None:
        """End the run's subscriptions and forget its events."""
        self.close(run_id)
        self._subscribers.pop(run_id, None)
        self._history.pop(run_id, None)

    def events(self, run_id: str) -> List[StreamEvent]:
        return list(self._history.get(run_id, []))

    def events_of_type(self, run_id: str, event_type: str) -> List[StreamEvent]:
        return [e for e in self._history.get(run_id, []) if e.type == event_type]


class EventEmitter:
    """Publishes a run's events; publishing failures are logged, never raised."""

    def __init__(self, bus: Optional[EventBus], run_id: str):
        self.bus = bus
        self.run_id = run_id

    async def emit(self, event_type: str, data: Optional[Dict[str, Any]] = None, agent_id: Optional[str] = None) -> None:
        if self.bus is None:
            return
        event = StreamEvent(type=event_type, run_id=self.run_id, data=data or {}, agent_id=agent_id)
        await best_effort(f"publish {event_type}", self.bus.publish(self.run_id, event), LOGGER)


__all__ = ["EventBus", "InMemoryEventBus", "EventEmitter"]
