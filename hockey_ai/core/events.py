"""Pipeline event channel.

Callers register listeners to observe progress (request sent, uploads
complete, response received, retries, fallbacks) instead of relying on a
global notification bus.

Examples:
    >>> bus = EventBus()
    >>> unsubscribe = bus.subscribe(lambda event: print(event.kind))
    >>> bus.emit(PipelineEvent(kind=EventKind.REQUEST_SENT, provider=ProviderType.GEMINI))
    EventKind.REQUEST_SENT
    >>> unsubscribe()

Tests:
    - tests/unit/test_events.py
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import AsyncIterator, Callable
from datetime import datetime, timezone
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field

from hockey_ai.config import ProviderType

logger = logging.getLogger(__name__)


class EventKind(str, Enum):
    """Pipeline event types."""

    REQUEST_SENT = "request_sent"
    RETRY_SCHEDULED = "retry_scheduled"
    UPLOADS_COMPLETE = "uploads_complete"
    RESPONSE_RECEIVED = "response_received"
    REQUEST_FAILED = "request_failed"
    FALLBACK_TRIGGERED = "fallback_triggered"
    CIRCUIT_OPENED = "circuit_opened"


class PipelineEvent(BaseModel):
    """One observable pipeline occurrence."""

    kind: EventKind
    provider: ProviderType | None = None
    detail: dict[str, Any] = Field(default_factory=dict)
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))


Listener = Callable[[PipelineEvent], None]


class EventBus:
    """Synchronous fan-out to registered listeners.

    Listener exceptions are logged and never reach the emitting request.
    """

    def __init__(self) -> None:
        self._listeners: list[Listener] = []

    @property
    def listener_count(self) -> int:
        return len(self._listeners)

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        """Register a listener.

        Args:
            listener: Called with each emitted event.

        Returns:
            A callable that removes the listener (idempotent).
        """
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def emit(self, event: PipelineEvent) -> None:
        for listener in list(self._listeners):
            try:
                listener(event)
            except Exception:
                logger.exception(f"Event listener failed on {event.kind.value}")

    def publish(
        self,
        kind: EventKind,
        provider: ProviderType | None = None,
        **detail: Any,
    ) -> None:
        """Build and emit an event."""
        self.emit(PipelineEvent(kind=kind, provider=provider, detail=detail))

    async def stream(self, max_queue: int = 100) -> AsyncIterator[PipelineEvent]:
        """Iterate over events as they are emitted.

        Events beyond max_queue unconsumed items are dropped.

        Yields:
            PipelineEvent objects until the consumer stops iterating.
        """
        queue: asyncio.Queue[PipelineEvent] = asyncio.Queue(maxsize=max_queue)

        def enqueue(event: PipelineEvent) -> None:
            if queue.full():
                logger.warning(f"Event stream queue full, dropping {event.kind.value}")
                return
            queue.put_nowait(event)

        unsubscribe = self.subscribe(enqueue)
        try:
            while True:
                yield await queue.get()
        finally:
            unsubscribe()
