"""LangChain adapters for the oracle and tool-invocation ports."""

from .langchain_oracle import ChatModelOracle, content_text
from .langchain_tools import LangChainToolInvoker, ToolMeta, ToolRegistry

__all__ = [
    "ChatModelOracle",
    "content_text",
    "LangChainToolInvoker",
    "ToolMeta",
    "ToolRegistry",
]
