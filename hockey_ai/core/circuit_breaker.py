"""Per-provider circuit breaker.

Gates whether a network attempt may be made against a provider that has
been failing. Pure state transitions, no I/O; all read-modify-write
sequences run under a lock so concurrent requests never lose updates.

State machine:
    CLOSED --(failure_threshold consecutive failures)--> OPEN
    OPEN --(recovery_timeout elapsed, on next check)--> HALF_OPEN
    HALF_OPEN --(success)--> CLOSED
    HALF_OPEN --(failure)--> OPEN

Examples:
    >>> breaker = CircuitBreaker()
    >>> breaker.can_make_request()
    True
    >>> for _ in range(3):
    ...     breaker.record_failure()
    >>> breaker.state
    <CircuitState.OPEN: 'open'>

Tests:
    - tests/unit/test_circuit_breaker.py
"""

from __future__ import annotations

import logging
import threading
import time
from collections.abc import Callable
from enum import Enum
from typing import Any

logger = logging.getLogger(__name__)

DEFAULT_FAILURE_THRESHOLD = 3
DEFAULT_RECOVERY_TIMEOUT = 60.0


class CircuitState(str, Enum):
    """Circuit breaker states."""

    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"


STATE_DESCRIPTIONS = {
    CircuitState.CLOSED: "Normal",
    CircuitState.OPEN: "Blocked (too many failures)",
    CircuitState.HALF_OPEN: "Testing recovery",
}


class CircuitBreaker:
    """Failure memory for one provider.

    Attributes:
        name: Label used in logs
        failure_threshold: Consecutive failures that open the circuit
        recovery_timeout: Seconds before an open circuit admits a trial request
    """

    def __init__(
        self,
        name: str = "default",
        failure_threshold: int = DEFAULT_FAILURE_THRESHOLD,
        recovery_timeout: float = DEFAULT_RECOVERY_TIMEOUT,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        """Initialize circuit breaker.

        Args:
            name: Label used in logs.
            failure_threshold: Consecutive failures before opening.
            recovery_timeout: Seconds to wait before half-opening.
            clock: Monotonic time source (injectable for tests).
        """
        if failure_threshold < 1:
            raise ValueError("failure_threshold must be >= 1")
        self.name = name
        self.failure_threshold = failure_threshold
        self.recovery_timeout = recovery_timeout
        self._clock = clock
        self._lock = threading.Lock()
        self._state = CircuitState.CLOSED
        self._failure_count = 0
        self._last_failure_time: float | None = None

    @property
    def state(self) -> CircuitState:
        with self._lock:
            return self._state

    @property
    def failure_count(self) -> int:
        with self._lock:
            return self._failure_count

    @property
    def last_failure_time(self) -> float | None:
        with self._lock:
            return self._last_failure_time

    @property
    def status(self) -> str:
        """Human-readable state."""
        return STATE_DESCRIPTIONS[self.state]

    def can_make_request(self) -> bool:
        """Check whether an attempt may be made.

        An open circuit whose recovery timeout has elapsed transitions to
        HALF_OPEN as a side effect and admits the caller.

        Returns:
            True if the attempt may proceed.
        """
        with self._lock:
            if self._state == CircuitState.CLOSED:
                return True
            if self._state == CircuitState.HALF_OPEN:
                return True
            if (
                self._last_failure_time is not None
                and self._clock() - self._last_failure_time >= self.recovery_timeout
            ):
                self._state = CircuitState.HALF_OPEN
                logger.info(f"Circuit '{self.name}' half-open, admitting trial request")
                return True
            return False

    def record_success(self) -> None:
        """Reset failure memory; close a half-open circuit."""
        with self._lock:
            self._failure_count = 0
            self._last_failure_time = None
            if self._state == CircuitState.HALF_OPEN:
                self._state = CircuitState.CLOSED
                logger.info(f"Circuit '{self.name}' closed after successful trial")

    def record_failure(self) -> CircuitState:
        """Record a failed attempt.

        A failure while HALF_OPEN reopens the circuit regardless of count.

        Returns:
            The state after recording.
        """
        with self._lock:
            self._failure_count += 1
            self._last_failure_time = self._clock()
            previous = self._state
            if previous == CircuitState.HALF_OPEN or self._failure_count >= self.failure_threshold:
                self._state = CircuitState.OPEN
            if self._state == CircuitState.OPEN and previous != CircuitState.OPEN:
                logger.warning(
                    f"Circuit '{self.name}' opened after {self._failure_count} failure(s)"
                )
            return self._state

    def snapshot(self) -> dict[str, Any]:
        """State snapshot for health reporting."""
        with self._lock:
            return {
                "state": self._state.value,
                "status": STATE_DESCRIPTIONS[self._state],
                "failure_count": self._failure_count,
            }
