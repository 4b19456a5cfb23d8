"""Abstract base class for rate-limit record stores."""

from __future__ import annotations

from abc import ABC, abstractmethod
from datetime import date


class RateLimitStore(ABC):
    """Durable key-value store holding one hit date per provider.

    Implementations must make each get/set/clear atomic. Callers serialize
    read-modify-write sequences themselves (see RateLimitTracker).
    """

    async def init(self) -> None:
        """Prepare the store (create tables, open files)."""

    async def close(self) -> None:
        """Release resources."""

    @abstractmethod
    async def get_hit_date(self, provider: str) -> date | None:
        """Get the stored hit date.

        Args:
            provider: Provider identity.

        Returns:
            The stored date, or None if no record exists.
        """

    @abstractmethod
    async def set_hit_date(self, provider: str, day: date) -> None:
        """Store the hit date, replacing any previous value.

        Args:
            provider: Provider identity.
            day: Calendar day in the quota reset timezone.
        """

    @abstractmethod
    async def clear(self, provider: str) -> None:
        """Remove the record for a provider (no-op if absent).

        Args:
            provider: Provider identity.
        """
