"""Token estimation for message windows.

Estimates are character based (about 3.5 characters per token, with a
penalty for JSON-looking text, which tokenizes less efficiently) plus fixed
per-message, per-tool-call and per-tool-definition overheads. Exact usage
reported by the provider is extracted separately with
``extract_token_usage``.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from typing import Any, Dict, Optional, Sequence

from langchain_core.messages import AIMessage, BaseMessage

LOGGER = logging.getLogger(__name__)

CHARS_PER_TOKEN = 3.5
JSON_PENALTY = 1.2
MESSAGE_OVERHEAD = 4
TOOL_CALL_OVERHEAD = 5
TOOL_DEFINITION_OVERHEAD = 10
SYSTEM_PROMPT_OVERHEAD = 10


# Model context limits (tokens). Prefix matching covers dated variants.
MODEL_CONTEXT_LIMITS: Dict[str, int] = {
    # OpenAI
    "gpt-4o": 128_000,
    "gpt-4o-mini": 128_000,
    "gpt-4-turbo": 128_000,
    "gpt-4-32k": 32_768,
    "gpt-4": 8_192,
    "gpt-3.5-turbo": 16_385,
    "o1": 200_000,
    "o3": 200_000,

    # Anthropic
    "claude-3-5-sonnet": 200_000,
    "claude-3-5-haiku": 200_000,
    "claude-3-opus": 200_000,
    "claude-3-sonnet": 200_000,
    "claude-3-haiku": 200_000,
    "claude": 200_000,

    # DeepSeek / Moonshot
    "deepseek-chat": 128_000,
    "deepseek-reasoner": 128_000,
    "moonshot-v1-128k": 128_000,
    "moonshot-v1-32k": 32_000,
    "moonshot-v1-8k": 8_000,

    "default": 128_000,
}


@dataclass(frozen=True)
class TokenUsage:
    """Provider-reported token usage of a single call."""
    prompt_tokens: int
    completion_tokens: int
    total_tokens: int
    model_name: str


@dataclass(frozen=True)
class TokenBreakdown:
    system_prompt: int
    messages: int
    tools: int

    @property
    def total(self) -> int:
        return self.system_prompt + self.messages + self.tools


def get_model_context_limit(model_id: str, override: Optional[int] = None) -> int:
    """Return the context window for ``model_id``.

    A ``provider:`` prefix is stripped; exact match wins, then the longest
    matching prefix, then the default.
    """
    if override:
        return override
    name = model_id.split(":", 1)[1] if ":" in model_id else model_id

    if name in MODEL_CONTEXT_LIMITS:
        return MODEL_CONTEXT_LIMITS[name]

    matches = [key for key in MODEL_CONTEXT_LIMITS if key != "default" and name.startswith(key)]
    if matches:
        return MODEL_CONTEXT_LIMITS[max(matches, key=len)]

    LOGGER.debug(f"Unknown model '{model_id}', using default context limit {MODEL_CONTEXT_LIMITS['default']}")
    return MODEL_CONTEXT_LIMITS["default"]


def _content_text(content: Any) -> str:
    if isinstance(content, str):
        return content
    if isinstance(content, list):
        parts = []
        for part in content:
            if isinstance(part, dict):
                parts.append(str(part.get("text", "")))
            else:
                parts.append(str(part))
        return "".join(parts)
    return str(content or "")


class TokenCounter:
    """Character-based token estimator."""

    def estimate_tokens(self, text: str) -> int:
        if not text:
            return 0
        estimate = len(text) / CHARS_PER_TOKEN
        if ("{" in text and "}" in text) or ("[" in text and "]" in text):
            estimate *= JSON_PENALTY
        return int(estimate + 0.999)

    def estimate_message_tokens(self, message: BaseMessage) -> int:
        tokens = MESSAGE_OVERHEAD + self.estimate_tokens(_content_text(message.content))
        if isinstance(message, AIMessage):
            for call in message.tool_calls or []:
                tokens += TOOL_CALL_OVERHEAD
                tokens += self.estimate_tokens(call.get("name", ""))
                tokens += self.estimate_tokens(json.dumps(call.get("args", {}), ensure_ascii=False, default=str))
        return tokens

    def estimate_messages_tokens(self, messages: Sequence[BaseMessage]) -> int:
        return sum(self.estimate_message_tokens(m) for m in messages)

    def estimate_tools_tokens(self, tools: Optional[Sequence[Dict[str, Any]]]) -> int:
        if not tools:
            return 0
        return sum(
            TOOL_DEFINITION_OVERHEAD + self.estimate_tokens(json.dumps(tool, ensure_ascii=False, default=str))
            for tool in tools
        )

    def estimate_system_prompt_tokens(self, system_prompt: Optional[str]) -> int:
        if not system_prompt:
            return 0
        return SYSTEM_PROMPT_OVERHEAD + self.estimate_tokens(system_prompt)

    def estimate_total_context(
        self,
        system_prompt: Optional[str],
        messages: Sequence[BaseMessage],
        tools: Optional[Sequence[Dict[str, Any]]] = None,
    ) -> int:
        return self.get_token_breakdown(system_prompt, messages, tools).total

    def get_token_breakdown(
        self,
        system_prompt: Optional[str],
        messages: Sequence[BaseMessage],
        tools: Optional[Sequence[Dict[str, Any]]] = None,
    ) -> TokenBreakdown:
        return TokenBreakdown(
            system_prompt=self.estimate_system_prompt_tokens(system_prompt),
            messages=self.estimate_messages_tokens(messages),
            tools=self.estimate_tools_tokens(tools),
        )

    def find_token_threshold_index(self, messages: Sequence[BaseMessage], max_tokens: int) -> int:
        """Index of the oldest message such that messages[index:] fit in ``max_tokens``."""
        total = 0
        for index in range(len(messages) - 1, -1, -1):
            total += self.estimate_message_tokens(messages[index])
            if total > max_tokens:
                return index + 1
        return 0

    @staticmethod
    def extract_token_usage(response: AIMessage) -> Optional[TokenUsage]:
        """Read provider usage from ``usage_metadata`` or ``response_metadata``."""
        usage_metadata = getattr(response, "usage_metadata", None)
        if usage_metadata:
            return TokenUsage(
                prompt_tokens=usage_metadata.get("input_tokens", 0),
                completion_tokens=usage_metadata.get("output_tokens", 0),
                total_tokens=usage_metadata.get("total_tokens", 0),
                model_name=response.response_metadata.get("model_name", "unknown"),
            )

        metadata = response.response_metadata or {}
        usage = metadata.get("token_usage") or metadata.get("usage")
        if not usage:
            LOGGER.debug("No token usage found in response metadata")
            return None
        return TokenUsage(
            prompt_tokens=usage.get("prompt_tokens", 0),
            completion_tokens=usage.get("completion_tokens", 0),
            total_tokens=usage.get("total_tokens", 0),
            model_name=metadata.get("model_name", "unknown"),
        )


__all__ = [
    "MODEL_CONTEXT_LIMITS",
    "TokenUsage",
    "TokenBreakdown",
    "TokenCounter",
    "get_model_context_limit",
]
