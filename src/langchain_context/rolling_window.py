"""
Rolling window strategy for conversation history.

Selects the subset of a conversation that fits a token ceiling. The default
path walks backwards from the most recent message; an importance-ordered
variant is available for callers that score their history.

An optional stateful log (filled through add_message) keeps per-message
importance and pin flags for the owning session.
"""

import logging
import time
from collections import deque
from dataclasses import dataclass
from typing import Optional

from .config import ContextConfig
from .messages import ROLES, ConversationMessage
from .token_budget import TokenBudgetAllocator

logger = logging.getLogger(__name__)

# Stop filling once this share of the budget is used
HEADROOM_RATIO = 0.9


@dataclass
class MessageWithMetadata:
    message: ConversationMessage
    timestamp: float
    importance: float
    is_pinned: bool = False


def default_importance(message: ConversationMessage) -> float:
    """Heuristic importance score in [0, 1]."""
    importance = 0.5

    if message.role in ROLES:
        importance += 0.2

    importance += min(len(message.content) / 1000, 0.2)

    if "?" in message.content:
        importance += 0.1
    if "error" in message.content.lower():
        importance += 0.2

    return max(0.0, min(importance, 1.0))


class RollingWindowStrategy:
    """
    Recency-biased message selection within a token budget.

    Usage:
        window = RollingWindowStrategy(allocator)
        selected = window.select_messages(history, max_tokens=4000)
    """

    def __init__(
        self,
        allocator: Optional[TokenBudgetAllocator] = None,
        config: Optional[ContextConfig] = None,
    ):
        self.config = config or ContextConfig()
        self.allocator = allocator or TokenBudgetAllocator()
        self.pin_recent = self.config.pin_recent
        self.importance_decay = self.config.importance_decay
        self._log: deque[MessageWithMetadata] = deque(
            maxlen=self.config.max_history_messages
        )

    def add_message(
        self,
        message: ConversationMessage,
        importance: Optional[float] = None,
        is_pinned: bool = False,
    ):
        """Append a message to the session log."""
        entry = MessageWithMetadata(
            message=message,
            timestamp=time.time(),
            importance=(
                importance if importance is not None else default_importance(message)
            ),
            is_pinned=is_pinned,
        )
        self._log.append(entry)
        logger.debug(
            "Message added to rolling window: role=%s importance=%.2f pinned=%s",
            message.role,
            entry.importance,
            entry.is_pinned,
        )

    def select_messages(
        self, messages: list[ConversationMessage], max_tokens: int
    ) -> list[ConversationMessage]:
        """
        Select the most recent messages that fit within max_tokens.

        Walks backwards from the newest message and stops at the first one
        that would overflow the budget, or once 90% of it is used. The result
        keeps chronological order.
        """
        if not messages or max_tokens <= 0:
            return []

        selected = []
        current_tokens = 0

        for msg in reversed(messages):
            msg_tokens = self.allocator.estimate_tokens(msg.content)
            if current_tokens + msg_tokens > max_tokens:
                break
            selected.append(msg)
            current_tokens += msg_tokens
            if current_tokens >= max_tokens * HEADROOM_RATIO:
                break

        selected.reverse()

        logger.debug(
            "Messages selected from rolling window: %d of %d (%d tokens)",
            len(selected),
            len(messages),
            current_tokens,
        )
        return selected

    def select_by_importance(
        self, messages: list[ConversationMessage], max_tokens: int
    ) -> list[ConversationMessage]:
        """
        Pack the most important messages into max_tokens.

        Ties on importance go to the more recent message. Messages that do
        not fit are skipped; the result keeps chronological order.
        """
        if not messages or max_tokens <= 0:
            return []

        known = {entry.message: entry.importance for entry in self._log}
        candidates = [
            MessageWithMetadata(
                message=msg,
                timestamp=idx,
                importance=known.get(msg, default_importance(msg)),
            )
            for idx, msg in enumerate(messages)
        ]
        ranked = sorted(
            candidates, key=lambda m: (m.importance, m.timestamp), reverse=True
        )

        selected = []
        current_tokens = 0
        for entry in ranked:
            msg_tokens = self.allocator.estimate_tokens(entry.message.content)
            if current_tokens + msg_tokens <= max_tokens:
                selected.append(entry)
                current_tokens += msg_tokens

        selected.sort(key=lambda m: m.timestamp)

        logger.debug(
            "Messages selected by importance: %d of %d (%d tokens)",
            len(selected),
            len(messages),
            current_tokens,
        )
        return [entry.message for entry in selected]

    def get_all_messages(self) -> list[ConversationMessage]:
        return [entry.message for entry in self._log]

    def get_entries(self) -> list[MessageWithMetadata]:
        return list(self._log)

    def clear(self):
        self._log.clear()
        logger.debug("Rolling window cleared")

    def get_count(self) -> int:
        return len(self._log)
