"""Tracking and cancellation of in-flight request tasks.

Every logical request (generation, upload fan-out, download) runs as an
asyncio task registered here, so one call can cancel all of them.

Tests:
    - tests/unit/test_cancellation.py
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Coroutine
from typing import Any, TypeVar

from hockey_ai.config import ProviderType
from hockey_ai.core.providers.base import RequestCancelledError

logger = logging.getLogger(__name__)

T = TypeVar("T")


class RequestRegistry:
    """Set of active request tasks with a single cancel-all operation."""

    def __init__(self) -> None:
        self._tasks: set[asyncio.Task[Any]] = set()

    @property
    def active_count(self) -> int:
        return sum(1 for task in self._tasks if not task.done())

    async def run(self, coro: Coroutine[Any, Any, T], provider: ProviderType) -> T:
        """Run a coroutine as a tracked task and await its result.

        Args:
            coro: The request coroutine.
            provider: Provider named in the cancellation error.

        Returns:
            The coroutine's result.

        Raises:
            RequestCancelledError: If cancel_all() cancelled the task.
            asyncio.CancelledError: If the caller itself was cancelled.
        """
        task = asyncio.create_task(coro)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        try:
            return await task
        except asyncio.CancelledError:
            current = asyncio.current_task()
            if current is not None and current.cancelling():
                raise
            raise RequestCancelledError(provider) from None

    def cancel_all(self) -> int:
        """Cancel every active task.

        Returns:
            Number of tasks cancelled.
        """
        cancelled = 0
        for task in list(self._tasks):
            if not task.done():
                task.cancel()
                cancelled += 1
        if cancelled:
            logger.info(f"Cancelled {cancelled} active request(s)")
        return cancelled
