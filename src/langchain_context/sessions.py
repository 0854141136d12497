"""
Per-thread context managers.

Every conversation thread gets its own ContextManager so rolling window logs
and compression history never leak between sessions.
"""

import logging
from typing import Callable, Optional

from .config import ContextConfig
from .manager import ContextManager

logger = logging.getLogger(__name__)


class ContextSessions:
    """Thread-keyed registry of ContextManager instances."""

    def __init__(
        self,
        config: Optional[ContextConfig] = None,
        model_name: str = "",
        estimator: Optional[Callable[[str], int]] = None,
    ):
        self.config = config or ContextConfig()
        self.model_name = model_name
        self._estimator = estimator
        self._managers: dict[str, ContextManager] = {}

    def get(self, thread_id: str) -> ContextManager:
        """Return the manager for thread_id, creating it on first use."""
        manager = self._managers.get(thread_id)
        if manager is None:
            manager = ContextManager(
                self.config, model_name=self.model_name, estimator=self._estimator
            )
            self._managers[thread_id] = manager
            logger.debug("Created context manager for thread %s", thread_id)
        return manager

    def drop(self, thread_id: str) -> bool:
        """Forget a thread; returns False if it was unknown."""
        if self._managers.pop(thread_id, None) is None:
            return False
        logger.debug("Dropped context manager for thread %s", thread_id)
        return True

    def thread_ids(self) -> list[str]:
        return list(self._managers)

    def __contains__(self, thread_id) -> bool:
        return thread_id in self._managers

    def __len__(self) -> int:
        return len(self._managers)
