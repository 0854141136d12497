"""
Context compressor.

Reduces an oversized set of conversation messages with one of four
strategies:

- summary: replace everything with a single summary message
- importance: keep the highest scoring share of messages
- dedup: drop near-duplicate messages
- hybrid (default): dedup, then importance filter, then summarize if the
  result is still above the target ratio

Summaries are built locally from keyword and action patterns, so the
compressor never calls a model.
"""

import logging
import math
import re
import time
from collections import deque
from dataclasses import dataclass
from datetime import datetime
from typing import Optional

from .config import COMPRESSION_STRATEGIES
from .messages import ConversationMessage
from .token_budget import TokenBudgetAllocator

logger = logging.getLogger(__name__)

HISTORY_CAPACITY = 100
RATIO_WINDOW = 20
DUPLICATE_SIMILARITY = 0.85
MAX_TOPICS = 5
MAX_ACTIONS = 5
RECENCY_WINDOW = 24 * 60 * 60  # seconds

TOPIC_KEYWORDS = (
    "requirements",
    "design",
    "implementation",
    "testing",
    "deployment",
    "database",
    "api",
    "authentication",
    "authorization",
    "frontend",
    "backend",
    "error",
    "bug",
    "feature",
    "refactor",
)

_MENTION_PATTERN = re.compile(r"\b(?:about|regarding|for)\s+(\w+)", re.IGNORECASE)

_ACTION_PATTERNS = [
    re.compile(r"\bcreated?\s+(\w+)"),
    re.compile(r"\bupdated?\s+(\w+)"),
    re.compile(r"\bdeleted?\s+(\w+)"),
    re.compile(r"\bimplemented\s+(\w+)"),
    re.compile(r"\bfixed\s+(\w+)"),
    re.compile(r"\bgenerated\s+(\w+)"),
]

_WHITESPACE = re.compile(r"\s+")
_PUNCTUATION = re.compile(r"[^\w\s]")


@dataclass
class CompressedContext:
    messages: list[ConversationMessage]
    original: list[ConversationMessage]
    original_token_count: int
    compressed_token_count: int
    compression_ratio: float
    strategy: str


@dataclass
class CompressionRecord:
    original: int
    compressed: int
    timestamp: float

    @property
    def ratio(self) -> float:
        return self.compressed / self.original if self.original else 1.0


def _signature(message: ConversationMessage) -> str:
    """Normalize content for near-duplicate comparison."""
    text = _WHITESPACE.sub(" ", message.content.lower())
    return _PUNCTUATION.sub("", text).strip()


def _similarity(a: str, b: str) -> float:
    """Jaccard similarity of the word sets of two signatures."""
    words_a = set(a.split())
    words_b = set(b.split())
    union = words_a | words_b
    if not union:
        return 0.0
    return len(words_a & words_b) / len(union)


def _relevance(text: str, query: str) -> float:
    """Share of query words (3+ chars) that appear in text."""
    query_words = [w for w in query.lower().split() if len(w) > 2]
    if not query_words:
        return 0.0
    text_lower = text.lower()
    matches = sum(1 for word in query_words if word in text_lower)
    return matches / len(query_words)


def _age_seconds(timestamp: datetime, now: Optional[datetime]) -> float:
    """Seconds between timestamp and now, never negative."""
    if now is None:
        now = datetime.now(timestamp.tzinfo)
    elif now.tzinfo is None and timestamp.tzinfo is not None:
        # A naive datetime is read in the other side's zone
        now = now.replace(tzinfo=timestamp.tzinfo)
    elif now.tzinfo is not None and timestamp.tzinfo is None:
        timestamp = timestamp.replace(tzinfo=now.tzinfo)
    return max((now - timestamp).total_seconds(), 0.0)


def _cutoff(scores: list[float], target_ratio: float) -> float:
    """Score a message needs to survive importance filtering."""
    ranked = sorted(scores, reverse=True)
    keep_count = math.floor(len(ranked) * target_ratio)
    if keep_count == 0:
        return ranked[0]
    return ranked[keep_count - 1]


class ContextCompressor:
    """
    Compresses conversation context towards a target token ratio.

    Each instance keeps its own compression history (last 100 runs), so
    compressors should be scoped to a session rather than shared.
    """

    def __init__(
        self,
        threshold: float = 0.7,
        strategy: str = "hybrid",
        allocator: Optional[TokenBudgetAllocator] = None,
    ):
        if strategy not in COMPRESSION_STRATEGIES:
            raise ValueError(f"Unknown compression strategy: {strategy!r}")
        self.threshold = threshold
        self.strategy = strategy
        self.allocator = allocator or TokenBudgetAllocator()
        self._history: deque[CompressionRecord] = deque(maxlen=HISTORY_CAPACITY)

        logger.debug(
            "ContextCompressor initialized: threshold=%.2f strategy=%s",
            threshold,
            strategy,
        )

    # ── Summarization ──

    def summarize(self, messages: list[ConversationMessage]) -> str:
        """Build a one-line summary of who said what."""
        if not messages:
            return ""

        by_role: dict[str, list[ConversationMessage]] = {}
        for msg in messages:
            by_role.setdefault(msg.role, []).append(msg)

        parts = []
        if by_role.get("system"):
            parts.append(f"System instructions: {len(by_role['system'])} messages")

        if by_role.get("user"):
            topics = self._extract_topics(by_role["user"])
            parts.append(
                "User discussed: "
                + (", ".join(topics) or f"{len(by_role['user'])} messages")
            )

        if by_role.get("assistant"):
            actions = self._extract_actions(by_role["assistant"])
            parts.append(
                "Assistant performed: "
                + (", ".join(actions) or f"{len(by_role['assistant'])} messages")
            )

        summary = ". ".join(parts)
        logger.debug(
            "Messages summarized: %d messages -> %d chars", len(messages), len(summary)
        )
        return summary

    def _extract_topics(self, messages: list[ConversationMessage]) -> list[str]:
        topics: dict[str, None] = {}
        for msg in messages:
            content = msg.content.lower()
            for keyword in TOPIC_KEYWORDS:
                if keyword in content:
                    topics[keyword] = None
            for mention in _MENTION_PATTERN.findall(content):
                topics[mention] = None
        return list(topics)[:MAX_TOPICS]

    def _extract_actions(self, messages: list[ConversationMessage]) -> list[str]:
        actions: dict[str, None] = {}
        for msg in messages:
            content = msg.content.lower()
            for pattern in _ACTION_PATTERNS:
                for obj in pattern.findall(content):
                    actions[obj] = None
        return list(actions)[:MAX_ACTIONS]

    # ── Scoring ──

    def score_importance(
        self,
        messages: list[ConversationMessage],
        current_query: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> list[float]:
        """Score each message in [0, 1]; an optional query boosts relevant ones."""
        scores = []
        for msg in messages:
            score = 0.5

            # Recency
            age = _age_seconds(msg.timestamp, now) if msg.timestamp is not None else 0.0
            score += math.exp(-age / RECENCY_WINDOW) * 0.2

            score += min(len(msg.content) / 1000, 0.2)

            if msg.role == "system":
                score += 0.2
            elif msg.role == "user":
                score += 0.1

            if current_query:
                score += _relevance(msg.content, current_query) * 0.3

            if "?" in msg.content:
                score += 0.1

            lower = msg.content.lower()
            if "error" in lower or "warning" in lower:
                score += 0.15

            if "```" in msg.content or "{" in msg.content:
                score += 0.1

            scores.append(min(score, 1.0))

        if scores:
            logger.debug(
                "Importance scores calculated: %d messages, average %.3f",
                len(scores),
                sum(scores) / len(scores),
            )
        return scores

    # ── Deduplication ──

    def deduplicate(
        self, messages: list[ConversationMessage]
    ) -> list[ConversationMessage]:
        """Drop near-duplicates, keeping the first occurrence in order."""
        unique = []
        seen: list[str] = []

        for msg in messages:
            signature = _signature(msg)
            if any(_similarity(signature, s) > DUPLICATE_SIMILARITY for s in seen):
                continue
            unique.append(msg)
            seen.append(signature)

        if messages:
            logger.debug(
                "Messages deduplicated: %d -> %d", len(messages), len(unique)
            )
        return unique

    # ── Compression ──

    def _filter_by_importance(
        self,
        messages: list[ConversationMessage],
        target_ratio: float,
        current_query: Optional[str],
    ) -> list[ConversationMessage]:
        if not messages:
            return []
        scores = self.score_importance(messages, current_query)
        cutoff = _cutoff(scores, target_ratio)
        return [msg for msg, score in zip(messages, scores) if score >= cutoff]

    def _summary_message(
        self, messages: list[ConversationMessage], label: str, max_tokens: int
    ) -> ConversationMessage:
        content = f"[{label}: {self.summarize(messages)}]"
        content = self.allocator.trim_to_fit(content, max(max_tokens, 1))
        return ConversationMessage(role="system", content=content)

    def compress(
        self,
        messages: list[ConversationMessage],
        target_ratio: Optional[float] = None,
        strategy: Optional[str] = None,
        current_query: Optional[str] = None,
    ) -> CompressedContext:
        """Compress messages with the given (or configured) strategy."""
        target_ratio = self.threshold if target_ratio is None else target_ratio
        strategy = strategy or self.strategy
        if strategy not in COMPRESSION_STRATEGIES:
            raise ValueError(f"Unknown compression strategy: {strategy!r}")
        if not 0 < target_ratio <= 1:
            raise ValueError("target_ratio must be in (0, 1]")

        messages = list(messages)
        original_tokens = self.allocator.estimate_messages(messages)

        if not messages:
            compressed = []
        elif strategy == "summary":
            compressed = [self._summary_message(messages, "Summary", original_tokens)]
        elif strategy == "importance":
            compressed = self._filter_by_importance(
                messages, target_ratio, current_query
            )
        elif strategy == "dedup":
            compressed = self.deduplicate(messages)
        else:
            deduped = self.deduplicate(messages)
            compressed = self._filter_by_importance(
                deduped, target_ratio, current_query
            )
            target_tokens = original_tokens * target_ratio
            if self.allocator.estimate_messages(compressed) > target_tokens:
                compressed = [
                    self._summary_message(
                        compressed, "Compressed", math.floor(target_tokens)
                    )
                ]

        compressed_tokens = self.allocator.estimate_messages(compressed)
        record = CompressionRecord(
            original=original_tokens,
            compressed=compressed_tokens,
            timestamp=time.time(),
        )
        self._history.append(record)

        result = CompressedContext(
            messages=compressed,
            original=messages,
            original_token_count=original_tokens,
            compressed_token_count=compressed_tokens,
            compression_ratio=record.ratio,
            strategy=strategy,
        )

        logger.info(
            "Context compressed: %d -> %d tokens (ratio %.2f, strategy=%s)",
            original_tokens,
            compressed_tokens,
            result.compression_ratio,
            strategy,
        )
        return result

    def get_compression_ratio(self) -> float:
        """Average compression ratio over the most recent runs."""
        if not self._history:
            return 1.0
        recent = list(self._history)[-RATIO_WINDOW:]
        return sum(r.ratio for r in recent) / len(recent)

    def get_history(self) -> list[CompressionRecord]:
        return list(self._history)
