"""
Context configuration and model context window mappings.
"""

import os
from dataclasses import dataclass

from dotenv import load_dotenv

# Model → context window size (tokens)
MODEL_CONTEXT_WINDOWS: dict[str, int] = {
    # Anthropic
    "claude-sonnet-4-5-20250929": 200_000,
    "claude-sonnet-4-20250514": 200_000,
    "claude-opus-4-20250514": 200_000,
    "claude-3-5-sonnet": 200_000,
    "claude-3-haiku": 200_000,
    # OpenAI compatible
    "gpt-4o": 128_000,
    "gpt-4o-mini": 128_000,
    "gpt-4-turbo": 128_000,
    # DeepSeek
    "deepseek-chat": 64_000,
    "deepseek-reasoner": 64_000,
    # GLM
    "glm-4": 128_000,
    "glm-4-flash": 128_000,
}

DEFAULT_MAX_TOKENS = 128_000
DEFAULT_RESERVE_FOR_RESPONSE = 4_000

COMPRESSION_STRATEGIES = ("summary", "importance", "dedup", "hybrid")


@dataclass
class ContextConfig:
    """Configuration for context assembly and compression."""

    # Token ceiling per model call (0 = auto-detect from model name)
    max_tokens: int = DEFAULT_MAX_TOKENS
    reserve_for_response: int = DEFAULT_RESERVE_FOR_RESPONSE

    # Compression defaults
    compression_threshold: float = 0.7
    compression_strategy: str = "hybrid"

    # Rolling window; pin_recent and importance_decay are stored only
    pin_recent: int = 5
    importance_decay: float = 0.9
    max_history_messages: int = 1000

    def __post_init__(self):
        if self.max_tokens < 0:
            raise ValueError("max_tokens must be >= 0")
        if self.reserve_for_response < 0:
            raise ValueError("reserve_for_response must be >= 0")
        if self.max_tokens and self.reserve_for_response >= self.max_tokens:
            raise ValueError("reserve_for_response must be smaller than max_tokens")
        if not 0 < self.compression_threshold <= 1:
            raise ValueError("compression_threshold must be in (0, 1]")
        if self.compression_strategy not in COMPRESSION_STRATEGIES:
            raise ValueError(
                f"compression_strategy must be one of {COMPRESSION_STRATEGIES}"
            )
        if self.max_history_messages <= 0:
            raise ValueError("max_history_messages must be > 0")

    @classmethod
    def from_env(cls, load_env_file: bool = True) -> "ContextConfig":
        """Load configuration from environment variables (and .env if present)."""
        if load_env_file:
            load_dotenv()
        return cls(
            max_tokens=int(os.getenv("CONTEXT_MAX_TOKENS", str(DEFAULT_MAX_TOKENS))),
            reserve_for_response=int(
                os.getenv("CONTEXT_RESERVE_FOR_RESPONSE", str(DEFAULT_RESERVE_FOR_RESPONSE))
            ),
            compression_threshold=float(
                os.getenv("CONTEXT_COMPRESSION_THRESHOLD", "0.7")
            ),
            compression_strategy=os.getenv("CONTEXT_COMPRESSION_STRATEGY", "hybrid"),
            pin_recent=int(os.getenv("CONTEXT_PIN_RECENT", "5")),
            importance_decay=float(os.getenv("CONTEXT_IMPORTANCE_DECAY", "0.9")),
            max_history_messages=int(
                os.getenv("CONTEXT_MAX_HISTORY_MESSAGES", "1000")
            ),
        )

    def get_max_tokens(self, model_name: str = "") -> int:
        """Resolve the token ceiling from config or model name."""
        if self.max_tokens > 0:
            return self.max_tokens
        # Try exact match first, then prefix match
        if model_name in MODEL_CONTEXT_WINDOWS:
            return MODEL_CONTEXT_WINDOWS[model_name]
        if model_name:
            for key, size in MODEL_CONTEXT_WINDOWS.items():
                if model_name.startswith(key) or key.startswith(model_name):
                    return size
        return DEFAULT_MAX_TOKENS
