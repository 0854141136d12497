"""
Token budget allocator.

Estimates token counts for text and messages and partitions a model call's
token ceiling between the system prompt, response schema, few-shot examples
and conversation history.
"""

import json
import logging
import math
import re
from dataclasses import dataclass
from typing import Callable, Iterable, Optional

from .config import DEFAULT_MAX_TOKENS, DEFAULT_RESERVE_FOR_RESPONSE
from .messages import ConversationMessage, message_text

logger = logging.getLogger(__name__)

# Approximate tokens per character
TOKEN_RATIOS: dict[str, float] = {
    "english": 0.25,  # ~4 chars per token
    "chinese": 0.5,  # ~2 chars per token
    "japanese": 0.5,
    "cjk": 0.5,
    "code": 0.3,  # ~3.3 chars per token
    "default": 0.25,
}

_CODE_CHARS = re.compile(r"[{}()\[\]<>,;:]")
_SPECIAL_CHARS = re.compile(r"[^A-Za-z0-9_\s\u4e00-\u9fff]")


def _overhead(text: str) -> int:
    """Extra tokens for JSON structure, markdown and punctuation."""
    overhead = 0.0
    if "{" in text and "}" in text:
        overhead += len(text) * 0.05
    if "#" in text or "```" in text:
        overhead += len(text) * 0.02
    overhead += len(_SPECIAL_CHARS.findall(text)) * 0.1
    return math.ceil(overhead)


def estimate_tokens(text: str, language: Optional[str] = None) -> int:
    """
    Heuristic token estimate.

    Code-like text (brackets, commas, colons...) uses the code ratio, anything
    else the ratio for the language hint. Empty text costs 0 tokens.
    """
    if not text:
        return 0
    if _CODE_CHARS.search(text):
        ratio = TOKEN_RATIOS["code"]
    else:
        ratio = TOKEN_RATIOS.get(language or "default", TOKEN_RATIOS["default"])
    return math.ceil(len(text) * ratio + _overhead(text))


def estimate_message_tokens(msg, estimator: Optional[Callable[[str], int]] = None) -> int:
    """Estimate tokens for a ConversationMessage or a LangChain message."""
    estimate = estimator or estimate_tokens
    if isinstance(msg, ConversationMessage):
        return estimate(msg.content)
    return estimate(message_text(msg))


def _serialize(value) -> str:
    return json.dumps(value, ensure_ascii=False, default=str)


@dataclass
class TokenAllocation:
    """Token split for one model call."""

    total: int
    available: int
    system: int
    schema: int
    examples: int
    conversation: int  # budget left for history
    used: int
    remaining: int
    compression_ratio: float


class TokenBudgetAllocator:
    """
    Manages the token budget of a model call.

    The estimator can be swapped for a real tokenizer; it must map text to an
    integer token count.
    """

    def __init__(
        self,
        max_tokens: int = DEFAULT_MAX_TOKENS,
        reserve_for_response: int = DEFAULT_RESERVE_FOR_RESPONSE,
        estimator: Optional[Callable[[str], int]] = None,
    ):
        self.max_tokens = max_tokens
        self.reserve_for_response = reserve_for_response
        self._estimator = estimator

        logger.debug(
            "TokenBudgetAllocator initialized: max_tokens=%d, reserve_for_response=%d",
            max_tokens,
            reserve_for_response,
        )

    def get_available_tokens(self) -> int:
        """Tokens available for input after reserving space for the response."""
        return self.max_tokens - self.reserve_for_response

    def estimate_tokens(self, text: str, language: Optional[str] = None) -> int:
        if self._estimator is not None:
            return self._estimator(text) if text else 0
        return estimate_tokens(text, language)

    def estimate_messages(self, messages: Iterable[ConversationMessage]) -> int:
        """Estimate the cost of message contents joined by newlines."""
        return self.estimate_tokens("\n".join(m.content for m in messages))

    def allocate(
        self,
        system_prompt: str,
        conversation_history: Iterable[ConversationMessage] = (),
        schema=None,
        examples: Iterable = (),
    ) -> TokenAllocation:
        """Allocate tokens for each context section."""
        available = self.get_available_tokens()

        system_tokens = self.estimate_tokens(system_prompt)
        schema_tokens = self.estimate_tokens(_serialize(schema)) if schema else 0
        examples_tokens = sum(self.estimate_tokens(_serialize(ex)) for ex in examples)

        fixed_overhead = system_tokens + schema_tokens + examples_tokens
        available_for_conversation = max(available - fixed_overhead, 0)

        conversation_tokens = self.estimate_messages(conversation_history)

        if conversation_tokens > available_for_conversation:
            compression_ratio = available_for_conversation / conversation_tokens
        else:
            compression_ratio = 1.0

        allocation = TokenAllocation(
            total=self.max_tokens,
            available=available,
            system=system_tokens,
            schema=schema_tokens,
            examples=examples_tokens,
            conversation=available_for_conversation,
            used=fixed_overhead + min(conversation_tokens, available_for_conversation),
            remaining=max(available - fixed_overhead - conversation_tokens, 0),
            compression_ratio=compression_ratio,
        )

        logger.debug("Token allocation calculated: %s", allocation)
        return allocation

    def trim_to_fit(
        self, text: str, max_tokens: int, language: Optional[str] = None
    ) -> str:
        """Return the longest prefix of text whose estimate fits max_tokens."""
        if self.estimate_tokens(text, language) <= max_tokens:
            return text

        # Binary search for the cutoff
        left, right = 0, len(text)
        best_length = 0
        while left <= right:
            mid = (left + right) // 2
            if self.estimate_tokens(text[:mid], language) <= max_tokens:
                best_length = mid
                left = mid + 1
            else:
                right = mid - 1

        logger.debug(
            "Text trimmed to fit budget: %d -> %d chars (max_tokens=%d)",
            len(text),
            best_length,
            max_tokens,
        )
        return text[:best_length]
