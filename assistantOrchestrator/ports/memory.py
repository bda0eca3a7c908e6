"""Memory / knowledge port consulted before planning."""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import Any, Dict, List, Protocol

from assistantOrchestrator.domain.models import new_id, utcnow


@dataclass(frozen=True)
class MemoryRecord:
    id: str
    user_id: str
    content: str
    metadata: Dict[str, Any] = field(default_factory=dict)
    score: float = 0.0


class MemoryStore(Protocol):
    async def search(self, user_id: str, query: str, limit: int = 5) -> List[MemoryRecord]:
        ...

    async def store(self, user_id: str, content: str, metadata: Dict[str, Any]) -> MemoryRecord:
        ...


_WORD_RE = re.compile(r"\w+")


def _terms(text: str) -> set:
    return {w.lower() for w in _WORD_RE.findall(text) if len(w) > 2}


class InMemoryMemoryStore:
    """Keyword-overlap memory store."""

    def __init__(self) -> None:
        self._records: Dict[str, List[MemoryRecord]] = {}

    async def search(self, user_id: str, query: str, limit: int = 5) -> List[MemoryRecord]:
        query_terms = _terms(query)
        if not query_terms or limit <= 0:
            return []
        scored = []
        for record in self._records.get(user_id, []):
            overlap = len(query_terms & _terms(record.content))
            if overlap:
                scored.append(MemoryRecord(
                    id=record.id,
                    user_id=record.user_id,
                    content=record.content,
                    metadata=record.metadata,
                    score=overlap / len(query_terms),
                ))
        scored.sort(key=lambda r: r.score, reverse=True)
        return scored[:limit]

    async def store(self, user_id: str, content: str, metadata: Dict[str, Any]) -> MemoryRecord:
        record = MemoryRecord(
            id=new_id(),
            user_id=user_id,
            content=content,
            metadata={**metadata, "stored_at": utcnow().isoformat()},
        )
        self._records.setdefault(user_id, []).append(record)
        return record


__all__ = ["MemoryRecord", "MemoryStore", "InMemoryMemoryStore"]
