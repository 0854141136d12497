"""
Token-budgeted context management for LLM calls.

Assembles the prompt context of each model call from a system prompt, an
optional response schema, few-shot examples and a growing conversation
history, without exceeding the model's token ceiling:

- Token budget: heuristic token estimation and budget allocation
- Rolling window: recency (or importance) based history selection
- Compressor: summary, importance, dedup and hybrid compression
- Manager: builds the final message list and token usage report

Each session owns its own manager (see ContextSessions), and
ContextMiddleware plugs a manager in front of a LangChain chat model.
"""

from .compressor import CompressedContext, CompressionRecord, ContextCompressor
from .config import ContextConfig
from .errors import ContextBuildError, ContextError, ContextOverflowError
from .manager import BuildContextResult, ContextManager, ContextStats, TokenUsage
from .messages import ConversationMessage, from_langchain, to_langchain
from .middleware import ContextMiddleware
from .rolling_window import MessageWithMetadata, RollingWindowStrategy
from .sessions import ContextSessions
from .token_budget import (
    TokenAllocation,
    TokenBudgetAllocator,
    estimate_message_tokens,
    estimate_tokens,
)

__all__ = [
    "BuildContextResult",
    "CompressedContext",
    "CompressionRecord",
    "ContextBuildError",
    "ContextCompressor",
    "ContextConfig",
    "ContextError",
    "ContextManager",
    "ContextMiddleware",
    "ContextOverflowError",
    "ContextSessions",
    "ContextStats",
    "ConversationMessage",
    "MessageWithMetadata",
    "RollingWindowStrategy",
    "TokenAllocation",
    "TokenBudgetAllocator",
    "TokenUsage",
    "estimate_message_tokens",
    "estimate_tokens",
    "from_langchain",
    "to_langchain",
]
