"""Context budgeting, message-structure repair and persisted history."""

from .history import ConversationHistoryService, format_time_gap
from .manager import SUMMARY_PREFIX, ContextManagementResult, ContextManager
from .message_utils import (
    drop_leading_tool_messages,
    trim_to_token_budget,
    truncate_messages_safely,
    validate_message_sequence,
)
from .token_counter import MODEL_CONTEXT_LIMITS, TokenCounter, get_model_context_limit

__all__ = [
    "ConversationHistoryService",
    "format_time_gap",
    "SUMMARY_PREFIX",
    "ContextManagementResult",
    "ContextManager",
    "drop_leading_tool_messages",
    "trim_to_token_budget",
    "truncate_messages_safely",
    "validate_message_sequence",
    "MODEL_CONTEXT_LIMITS",
    "TokenCounter",
    "get_model_context_limit",
]
