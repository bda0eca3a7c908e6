"""Persisted conversation history port."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional, Protocol

from langchain_core.messages import BaseMessage

from assistantOrchestrator.domain.models import new_id, utcnow


@dataclass
class StoredMessage:
    id: str
    user_id: str
    run_id: Optional[str]
    message: BaseMessage
    metadata: Dict[str, Any] = field(default_factory=dict)
    created_at: datetime = field(default_factory=utcnow)


@dataclass
class ConversationSummary:
    user_id: str
    content: str
    summarized_message_count: int = 0
    summarized_up_to_id: Optional[str] = None
    original_token_count: int = 0
    summary_token_count: int = 0
    updated_at: datetime = field(default_factory=utcnow)


class HistoryRepository(Protocol):
    async def append(
        self,
        user_id: str,
        run_id: Optional[str],
        message: BaseMessage,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> StoredMessage:
        ...

    async def list_messages(self, user_id: str, after_id: Optional[str] = None) -> List[StoredMessage]:
        ...

    async def last_message(self, user_id: str) -> Optional[StoredMessage]:
        ...

    async def get_summary(self, user_id: str) -> Optional[ConversationSummary]:
        ...

    async def upsert_summary(self, summary: ConversationSummary) -> None:
        ...

    async def delete_all(self, user_id: str) -> int:
        ...


class InMemoryHistoryRepository:
    """Chronological per-user message log with a rolling summary."""

    def __init__(self) -> None:
        self._messages: Dict[str, List[StoredMessage]] = {}
        self._summaries: Dict[str, ConversationSummary] = {}

    async def append(
        self,
        user_id: str,
        run_id: Optional[str],
        message: BaseMessage,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> StoredMessage:
        stored = StoredMessage(
            id=new_id(),
            user_id=user_id,
            run_id=run_id,
            message=message,
            metadata=dict(metadata or {}),
        )
        self._messages.setdefault(user_id, []).append(stored)
        return stored

    async def list_messages(self, user_id: str, after_id: Optional[str] = None) -> List[StoredMessage]:
        messages = list(self._messages.get(user_id, []))
        if after_id is None:
            return messages
        for index, stored in enumerate(messages):
            if stored.id == after_id:
                return messages[index + 1:]
        return messages

    async def last_message(self, user_id: str) -> Optional[StoredMessage]:
        messages = self._messages.get(user_id)
        return messages[-1] if messages else None

    async def get_summary(self, user_id: str) -> Optional[ConversationSummary]:
        return self._summaries.get(user_id)

    async def upsert_summary(self, summary: ConversationSummary) -> None:
        summary.updated_at = utcnow()
        self._summaries[summary.user_id] = summary

    async def delete_all(self, user_id: str) -> int:
        self._summaries.pop(user_id, None)
        return len(self._messages.pop(user_id, []))


__all__ = ["StoredMessage", "ConversationSummary", "HistoryRepository", "InMemoryHistoryRepository"]
