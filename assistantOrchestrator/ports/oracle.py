"""Planning oracle port.

The oracle is the decision model behind both the control loop and the
sub-agents. ``stream`` yields a sequence of chunks for one turn; ``generate``
is a one-shot text completion used for digests and topic extraction.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, AsyncIterator, Dict, List, Optional, Protocol, Sequence, Union

from langchain_core.messages import BaseMessage


@dataclass(frozen=True)
class OracleOptions:
    system_prompt: Optional[str] = None
    tools: Sequence[Dict[str, Any]] = ()
    temperature: Optional[float] = None
    max_tokens: Optional[int] = None


@dataclass(frozen=True)
class Usage:
    prompt_tokens: int = 0
    completion_tokens: int = 0

    @property
    def total_tokens(self) -> int:
        return self.prompt_tokens + self.completion_tokens


@dataclass(frozen=True)
class TokenChunk:
    text: str
    kind: str = "token"


@dataclass(frozen=True)
class ToolCallChunk:
    id: str
    name: str
    args: Dict[str, Any] = field(default_factory=dict)
    kind: str = "tool_call"


@dataclass(frozen=True)
class DoneChunk:
    finish_reason: str = "stop"
    usage: Usage = field(default_factory=Usage)
    kind: str = "done"


OracleChunk = Union[TokenChunk, ToolCallChunk, DoneChunk]


class PlanningOracle(Protocol):
    """Decision model consumed by the control loop and sub-agents."""

    def stream(self, messages: List[BaseMessage], options: OracleOptions) -> AsyncIterator[OracleChunk]:
        ...

    async def generate(self, messages: List[BaseMessage], options: OracleOptions) -> str:
        ...

    def get_model(self) -> str:
        ...

    def calculate_cost(self, prompt_tokens: int, completion_tokens: int) -> float:
        ...


__all__ = [
    "OracleOptions",
    "Usage",
    "TokenChunk",
    "ToolCallChunk",
    "DoneChunk",
    "OracleChunk",
    "PlanningOracle",
]
