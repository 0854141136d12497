"""
Context manager.

Builds the message list for one model call from a system prompt, an optional
response schema, optional few-shot examples and the conversation history,
keeping the whole context inside the token ceiling.

Compression is not applied automatically; callers ask for a summary or a
compressed view of the session log when they want one.
"""

import json
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Callable, Optional

from .compressor import CompressedContext, ContextCompressor
from .config import ContextConfig
from .errors import ContextBuildError, ContextOverflowError
from .messages import ConversationMessage
from .rolling_window import RollingWindowStrategy
from .token_budget import TokenBudgetAllocator

logger = logging.getLogger(__name__)


@dataclass
class TokenUsage:
    system: int
    examples: int
    conversation: int
    total: int
    available: int
    remaining: int


@dataclass
class ContextStats:
    message_count: int
    total_tokens: int
    available_tokens: int
    compression_ratio: float
    last_updated: datetime


@dataclass
class BuildContextResult:
    messages: list[ConversationMessage]
    system_prompt: str
    conversation_history: list[ConversationMessage]
    token_usage: TokenUsage
    stats: ContextStats


def render_system_context(system_prompt: str, schema=None) -> str:
    """System prompt plus an optional JSON response format block."""
    if not schema:
        return system_prompt
    return (
        f"{system_prompt}\n\n## Response Format\n\n"
        "You must respond with valid JSON matching this schema:\n"
        f"```\n{json.dumps(schema, indent=2, ensure_ascii=False)}\n```\n"
    )


def render_examples_context(examples) -> str:
    """Numbered few-shot examples, or an empty string."""
    if not examples:
        return ""
    parts = ["## Examples\n"]
    for index, example in enumerate(examples, start=1):
        parts.append(
            f"### Example {index}\n\n"
            f"```\n{json.dumps(example, indent=2, ensure_ascii=False)}\n```\n"
        )
    return "\n".join(parts)


class ContextManager:
    """
    Assembles budget-respecting context for model calls.

    One instance per conversation/session: the rolling window log and the
    compressor history are owned by the instance.

    Usage:
        manager = ContextManager(ContextConfig(max_tokens=32_000))
        result = manager.build_context(
            system_prompt="You are a requirements analyst.",
            conversation_history=history,
            schema=response_schema,
        )
        llm.invoke([to_langchain(m) for m in result.messages])
    """

    def __init__(
        self,
        config: Optional[ContextConfig] = None,
        model_name: str = "",
        estimator: Optional[Callable[[str], int]] = None,
    ):
        self.config = config or ContextConfig()
        self.model_name = model_name

        max_tokens = self.config.get_max_tokens(model_name)
        self.allocator = TokenBudgetAllocator(
            max_tokens=max_tokens,
            reserve_for_response=self.config.reserve_for_response,
            estimator=estimator,
        )
        self.rolling_window = RollingWindowStrategy(self.allocator, self.config)
        self.compressor = ContextCompressor(
            threshold=self.config.compression_threshold,
            strategy=self.config.compression_strategy,
            allocator=self.allocator,
        )

        logger.info(
            "ContextManager initialized: max_tokens=%d reserve_for_response=%d",
            max_tokens,
            self.config.reserve_for_response,
        )

    def build_context(
        self,
        system_prompt: str,
        conversation_history: Optional[list[ConversationMessage]] = None,
        schema=None,
        examples: Optional[list] = None,
        max_tokens: Optional[int] = None,
    ) -> BuildContextResult:
        """
        Build the message list for one model call.

        Raises ContextBuildError if any step fails; the cause is chained.
        """
        history = list(conversation_history or [])
        examples = list(examples or [])

        try:
            logger.debug(
                "Building context: %d history messages, %d examples, schema=%s",
                len(history),
                len(examples),
                schema is not None,
            )

            available = self.allocator.get_available_tokens()
            if max_tokens is not None:
                available = min(available, max_tokens)

            system_context = render_system_context(system_prompt, schema)
            examples_context = render_examples_context(examples)

            system_tokens = self.allocator.estimate_tokens(system_context)
            examples_tokens = self.allocator.estimate_tokens(examples_context)
            remaining_for_history = available - system_tokens - examples_tokens
            if remaining_for_history < 0:
                raise ContextOverflowError(
                    f"System prompt and examples need {system_tokens + examples_tokens} "
                    f"tokens but only {available} are available",
                    current_tokens=system_tokens + examples_tokens,
                    max_tokens=available,
                )

            selected = self.rolling_window.select_messages(
                history, remaining_for_history
            )

            messages = [ConversationMessage(role="system", content=system_context)]
            if examples_context:
                messages.append(
                    ConversationMessage(role="system", content=examples_context)
                )
            messages.extend(selected)

            conversation_tokens = sum(
                self.allocator.estimate_tokens(m.content) for m in selected
            )
            total_tokens = system_tokens + examples_tokens + conversation_tokens
            if total_tokens > available:
                raise ContextOverflowError(
                    f"Assembled context uses {total_tokens} tokens, "
                    f"ceiling is {available}",
                    current_tokens=total_tokens,
                    max_tokens=available,
                )

            result = BuildContextResult(
                messages=messages,
                system_prompt=system_context,
                conversation_history=selected,
                token_usage=TokenUsage(
                    system=system_tokens,
                    examples=examples_tokens,
                    conversation=conversation_tokens,
                    total=total_tokens,
                    available=available,
                    remaining=available - total_tokens,
                ),
                stats=self.get_stats(),
            )

            logger.debug(
                "Context built: %d messages, %d/%d tokens (%d of %d history kept)",
                len(messages),
                total_tokens,
                available,
                len(selected),
                len(history),
            )
            return result
        except Exception as e:
            logger.error("Failed to build context: %s", e)
            raise ContextBuildError(
                f"Failed to build context: {e}", original_error=e
            ) from e

    def add_message(
        self,
        message: ConversationMessage,
        importance: Optional[float] = None,
        is_pinned: bool = False,
    ):
        self.rolling_window.add_message(message, importance, is_pinned)

    def clear_history(self):
        self.rolling_window.clear()
        logger.debug("Conversation history cleared")

    def compress_context(self) -> str:
        """Summarize the session log without modifying it."""
        messages = self.rolling_window.get_all_messages()
        if not messages:
            return ""

        summary = self.compressor.summarize(messages)
        logger.info(
            "Context summarized: %d messages -> %d chars", len(messages), len(summary)
        )
        return summary

    def compress_history(
        self,
        strategy: Optional[str] = None,
        target_ratio: Optional[float] = None,
        current_query: Optional[str] = None,
    ) -> CompressedContext:
        """Compressed view of the session log; the log itself is untouched."""
        return self.compressor.compress(
            self.rolling_window.get_all_messages(),
            target_ratio=target_ratio,
            strategy=strategy,
            current_query=current_query,
        )

    def get_stats(self) -> ContextStats:
        messages = self.rolling_window.get_all_messages()
        return ContextStats(
            message_count=len(messages),
            total_tokens=self.allocator.estimate_messages(messages),
            available_tokens=self.allocator.get_available_tokens(),
            compression_ratio=self.compressor.get_compression_ratio(),
            last_updated=datetime.now(),
        )
