"""
Exception definitions for context management.

All context-related exceptions inherit from ContextError.
"""

from typing import Optional


class ContextError(Exception):
    """Base exception for context management errors."""

    def __init__(self, message: str, original_error: Optional[Exception] = None):
        super().__init__(message)
        self.message = message
        self.original_error = original_error


class ContextBuildError(ContextError):
    """Raised when a prompt context could not be assembled."""


class ContextOverflowError(ContextError):
    """Raised when assembled context exceeds its token ceiling."""

    def __init__(self, message, current_tokens=None, max_tokens=None):
        super().__init__(message)
        self.current_tokens = current_tokens
        self.max_tokens = max_tokens
