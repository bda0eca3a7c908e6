"""Chat model construction from environment-derived settings.

The model identifier may carry a ``provider:`` prefix (``openai:gpt-4o``);
the prefix is dropped before the client is built, since every configured
endpoint speaks the OpenAI-compatible protocol.
"""

from __future__ import annotations

from typing import Dict

from langchain_openai import ChatOpenAI

from assistantOrchestrator.config.settings import ModelSettings


def strip_provider_prefix(model_id: str) -> str:
    """Return ``model_id`` without a leading ``provider:`` segment."""
    _, _, bare = model_id.partition(":")
    return bare if bare else model_id


def _chat_kwargs(settings: ModelSettings) -> Dict[str, object]:
    if not settings.api_key:
        raise RuntimeError(
            f"Missing API key for model {settings.model_id}; set MODEL_API_KEY or OPENAI_API_KEY in .env."
        )
    kwargs: Dict[str, object] = {
        "model": strip_provider_prefix(settings.model_id),
        "api_key": settings.api_key,
        "stream_usage": True,
    }
    if settings.base_url:
        kwargs["base_url"] = settings.base_url
    return kwargs


def build_chat_model(settings: ModelSettings) -> ChatOpenAI:
    """Build the OpenAI-compatible chat client for the planning oracle.

    Raises:
        RuntimeError: If no API key is configured
    """
    return ChatOpenAI(**_chat_kwargs(settings))


__all__ = ["build_chat_model", "strip_provider_prefix"]
