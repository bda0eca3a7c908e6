"""Planning oracle backed by a LangChain chat model.

``ChatModelOracle`` adapts any ``BaseChatModel`` (``ChatOpenAI`` by default,
see ``runtime.model_resolver``) to the oracle port: text deltas are yielded
as they stream in, tool calls and usage once the stream has been fully
accumulated.
"""

from __future__ import annotations

import logging
from typing import Any, AsyncIterator, List, Optional

from langchain_core.language_models import BaseChatModel
from langchain_core.messages import AIMessageChunk, BaseMessage, SystemMessage

from assistantOrchestrator.context.token_counter import TokenCounter
from assistantOrchestrator.domain.models import new_id
from assistantOrchestrator.ports.oracle import DoneChunk, OracleChunk, OracleOptions, TokenChunk, ToolCallChunk, Usage

LOGGER = logging.getLogger(__name__)


def content_text(content: Any) -> str:
    """Flatten message content (plain string or content blocks) into text."""
    if isinstance(content, str):
        return content
    if isinstance(content, list):
        parts = []
        for block in content:
            if isinstance(block, str):
                parts.append(block)
            elif isinstance(block, dict) and block.get("type") == "text":
                parts.append(block.get("text", ""))
        return "".join(parts)
    return ""


class ChatModelOracle:
    """Oracle port over a LangChain chat model."""

    def __init__(
        self,
        model: BaseChatModel,
        model_id: str,
        input_cost_per_1k: float = 0.0,
        output_cost_per_1k: float = 0.0,
    ):
        self.model = model
        self.model_id = model_id
        self.input_cost_per_1k = input_cost_per_1k
        self.output_cost_per_1k = output_cost_per_1k

    def get_model(self) -> str:
        return self.model_id

    def calculate_cost(self, prompt_tokens: int, completion_tokens: int) -> float:
        return (
            prompt_tokens / 1000 * self.input_cost_per_1k
            + completion_tokens / 1000 * self.output_cost_per_1k
        )

    def _runnable(self, options: OracleOptions):
        runnable = self.model
        if options.tools:
            runnable = self.model.bind_tools(list(options.tools))
        kwargs = {}
        if options.temperature is not None:
            kwargs["temperature"] = options.temperature
        if options.max_tokens is not None:
            kwargs["max_tokens"] = options.max_tokens
        return runnable.bind(**kwargs) if kwargs else runnable

    @staticmethod
    def _prompt(messages: List[BaseMessage], system_prompt: Optional[str]) -> List[BaseMessage]:
        if not system_prompt:
            return list(messages)
        return [SystemMessage(content=system_prompt)] + list(messages)

    async def stream(self, messages: List[BaseMessage], options: OracleOptions) -> AsyncIterator[OracleChunk]:
        aggregate: Optional[AIMessageChunk] = None
        async for chunk in self._runnable(options).astream(self._prompt(messages, options.system_prompt)):
            if not isinstance(chunk, AIMessageChunk):
                continue
            aggregate = chunk if aggregate is None else aggregate + chunk
            text = content_text(chunk.content)
            if text:
                yield TokenChunk(text=text)

        if aggregate is None:
            LOGGER.warning(f"Model {self.model_id} returned an empty stream")
            yield DoneChunk(finish_reason="stop")
            return

        for call in aggregate.tool_calls:
            yield ToolCallChunk(id=call.get("id") or new_id(), name=call["name"], args=dict(call.get("args") or {}))

        usage = TokenCounter.extract_token_usage(aggregate)
        finish_reason = (aggregate.response_metadata or {}).get("finish_reason") or "stop"
        yield DoneChunk(
            finish_reason=finish_reason,
            usage=Usage(
                prompt_tokens=usage.prompt_tokens if usage else 0,
                completion_tokens=usage.completion_tokens if usage else 0,
            ),
        )

    async def generate(self, messages: List[BaseMessage], options: OracleOptions) -> str:
        response = await self._runnable(options).ainvoke(self._prompt(messages, options.system_prompt))
        return content_text(response.content)


__all__ = ["ChatModelOracle", "content_text"]
