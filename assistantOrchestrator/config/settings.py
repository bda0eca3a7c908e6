"""Environment-bound configuration objects.

All settings groups are Pydantic BaseSettings classes that load from the
process environment and an optional .env file. Components receive their group
explicitly, so tests can build settings in code without touching the
environment.

Example:
    from assistantOrchestrator.config.settings import get_settings

    settings = get_settings()  # Cached singleton
    max_iterations = settings.orchestrator.max_iterations
    max_retries = settings.guard.max_retries_per_task
"""

from __future__ import annotations

from functools import lru_cache
from typing import Optional

from dotenv import load_dotenv
from pydantic import AliasChoices, Field
from pydantic_settings import BaseSettings, SettingsConfigDict


load_dotenv()


class ModelSettings(BaseSettings):
    """Planning oracle model identifier, credentials and pricing.

    Supported environment names:
    - MODEL_ID / ORCHESTRATOR_MODEL (model identifier, may carry a "provider:" prefix)
    - MODEL_API_KEY / OPENAI_API_KEY
    - MODEL_BASE_URL / OPENAI_BASE_URL
    - MODEL_CONTEXT_WINDOW (overrides the built-in context limit table)
    - MODEL_INPUT_COST_PER_1K / MODEL_OUTPUT_COST_PER_1K (USD)
    """

    model_id: str = Field(
        default="gpt-4o",
        validation_alias=AliasChoices("MODEL_ID", "ORCHESTRATOR_MODEL"),
    )
    api_key: Optional[str] = Field(
        default=None,
        validation_alias=AliasChoices("MODEL_API_KEY", "OPENAI_API_KEY"),
    )
    base_url: Optional[str] = Field(
        default=None,
        validation_alias=AliasChoices("MODEL_BASE_URL", "OPENAI_BASE_URL"),
    )
    context_window: Optional[int] = Field(
        default=None,
        validation_alias=AliasChoices("MODEL_CONTEXT_WINDOW"),
    )
    input_cost_per_1k: float = Field(
        default=0.0025,
        ge=0,
        validation_alias=AliasChoices("MODEL_INPUT_COST_PER_1K"),
    )
    output_cost_per_1k: float = Field(
        default=0.01,
        ge=0,
        validation_alias=AliasChoices("MODEL_OUTPUT_COST_PER_1K"),
    )

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        populate_by_name=True,
    )


class OrchestratorSettings(BaseSettings):
    """Control loop limits and run preamble behaviour.

    - max_iterations: decision loop cap per run (reaching it fails the run)
    - agent_wait_timeout_seconds: longest wait for a sub-agent before the oracle gets another turn
    - temperature / max_tokens: oracle options for planning turns
    - enable_scripted_plans: allow codeword-triggered predefined plans
    - scripted_timeout_seconds: wall-clock ceiling for scripted plan runs
    """

    max_iterations: int = Field(default=50, ge=1, le=500, alias="ORCHESTRATOR_MAX_ITERATIONS")
    temperature: float = Field(default=0.7, ge=0, le=2, alias="ORCHESTRATOR_TEMPERATURE")
    max_tokens: int = Field(default=4096, ge=1, alias="ORCHESTRATOR_MAX_TOKENS")
    memory_search_limit: int = Field(default=5, ge=0, alias="ORCHESTRATOR_MEMORY_SEARCH_LIMIT")
    agent_wait_timeout_seconds: float = Field(default=120.0, gt=0, alias="ORCHESTRATOR_AGENT_WAIT_TIMEOUT")

    enable_scripted_plans: bool = Field(default=False, alias="ENABLE_SCRIPTED_PLANS")
    scripted_plans_path: Optional[str] = Field(default=None, alias="SCRIPTED_PLANS_PATH")
    scripted_timeout_seconds: float = Field(default=600.0, gt=0, alias="SCRIPTED_TIMEOUT_SECONDS")
    scripted_poll_interval: float = Field(default=1.0, gt=0, alias="SCRIPTED_POLL_INTERVAL")

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        populate_by_name=True,
    )


class GuardSettings(BaseSettings):
    """Retry and intervention thresholds, counted per run."""

    max_retries_per_task: int = Field(default=3, ge=0, alias="MAX_RETRIES_PER_TASK")
    max_total_interventions: int = Field(default=10, ge=0, alias="MAX_TOTAL_INTERVENTIONS")

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        populate_by_name=True,
    )


class SubAgentSettings(BaseSettings):
    """Sub-agent decision loop limits."""

    max_iterations: int = Field(default=20, ge=1, le=200, alias="SUBAGENT_MAX_ITERATIONS")
    temperature: float = Field(default=0.7, ge=0, le=2, alias="SUBAGENT_TEMPERATURE")
    max_tokens: int = Field(default=4096, ge=1, alias="SUBAGENT_MAX_TOKENS")

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        populate_by_name=True,
    )


class ContextSettings(BaseSettings):
    """Live message window budgeting.

    Summarization triggers once the estimated context exceeds
    (context_limit - output_reserve) * trigger_threshold and folds old turns
    until the window fits under (context_limit - output_reserve) * target_threshold.
    """

    enabled: bool = Field(default=True, alias="CONTEXT_MANAGEMENT_ENABLED")
    trigger_threshold: float = Field(default=0.8, gt=0, le=1, alias="CONTEXT_TRIGGER_THRESHOLD")
    target_threshold: float = Field(default=0.5, gt=0, le=1, alias="CONTEXT_TARGET_THRESHOLD")
    min_messages_to_keep: int = Field(default=4, ge=1, alias="CONTEXT_MIN_MESSAGES_TO_KEEP")
    output_reserve: int = Field(default=4096, ge=0, alias="CONTEXT_OUTPUT_RESERVE")
    summary_temperature: float = Field(default=0.3, ge=0, le=2)
    summary_max_tokens: int = Field(default=2000, ge=1)

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        populate_by_name=True,
    )


class HistorySettings(BaseSettings):
    """Persisted conversation history across runs."""

    enabled: bool = Field(default=True, alias="CONVERSATION_HISTORY_ENABLED")
    max_history_tokens: int = Field(default=2500, ge=1, alias="HISTORY_MAX_TOKENS")
    max_recent_messages: int = Field(default=30, ge=1, alias="HISTORY_MAX_RECENT_MESSAGES")
    summarization_threshold: int = Field(default=30, ge=1, alias="HISTORY_SUMMARIZATION_THRESHOLD")
    keep_recent_count: int = Field(default=10, ge=0, alias="HISTORY_KEEP_RECENT_COUNT")
    time_gap_threshold_seconds: int = Field(default=3600, ge=0, alias="HISTORY_TIME_GAP_SECONDS")

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        populate_by_name=True,
    )


class ObservabilitySettings(BaseSettings):
    """Logging configuration."""

    log_level: str = Field(default="INFO", alias="LOG_LEVEL")
    log_dir: str = Field(default="logs", alias="LOG_DIR")
    log_prompt_max_length: int = Field(default=500, ge=100, le=5000, alias="LOG_PROMPT_MAX_LENGTH")

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        populate_by_name=True,
    )


class Settings(BaseSettings):
    """Root application settings loaded from .env file.

    Nested groups:
    - models: oracle model routing, credentials and pricing
    - orchestrator: control loop limits and scripted plan mode
    - guard: retry / intervention thresholds
    - subagents: worker loop limits
    - context: live window budgeting
    - history: persisted conversation history
    - observability: logging

    Use get_settings() to obtain a cached singleton instance.
    """

    environment: str = Field(default="dev", alias="APP_ENV")
    models: ModelSettings = Field(default_factory=ModelSettings)
    orchestrator: OrchestratorSettings = Field(default_factory=OrchestratorSettings)
    guard: GuardSettings = Field(default_factory=GuardSettings)
    subagents: SubAgentSettings = Field(default_factory=SubAgentSettings)
    context: ContextSettings = Field(default_factory=ContextSettings)
    history: HistorySettings = Field(default_factory=HistorySettings)
    observability: ObservabilitySettings = Field(default_factory=ObservabilitySettings)

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        validate_assignment=True,
        case_sensitive=False,
    )


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Return a cached singleton Settings instance."""
    return Settings()


__all__ = [
    "ModelSettings",
    "OrchestratorSettings",
    "GuardSettings",
    "SubAgentSettings",
    "ContextSettings",
    "HistorySettings",
    "ObservabilitySettings",
    "Settings",
    "get_settings",
]
