"""Daily quota tracking across process restarts.

Remembers that a provider's shared daily quota was exhausted so later calls
can skip straight to a fallback provider. "Today" is computed in the
provider's quota reset timezone (not the host's local timezone).

Examples:
    >>> tracker = RateLimitTracker(SQLRateLimitStore(url), ZoneInfo("America/Los_Angeles"))
    >>> await tracker.record_rate_limit_hit(ProviderType.GEMINI)
    >>> await tracker.is_at_limit(ProviderType.GEMINI)
    True

Tests:
    - tests/unit/test_rate_limit.py
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable
from datetime import date, datetime, timezone, tzinfo
from zoneinfo import ZoneInfo

from hockey_ai.config import ProviderType
from hockey_ai.storage.base import RateLimitStore

logger = logging.getLogger(__name__)

DEFAULT_QUOTA_TIMEZONE = ZoneInfo("America/Los_Angeles")


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


class RateLimitTracker:
    """Persisted per-provider "quota exhausted today" flag.

    All read-modify-write sequences are serialized through one asyncio lock,
    so concurrent callers never lose a write or clear a fresh record.

    Attributes:
        store: Durable record store
        quota_timezone: Timezone in which quotas reset
    """

    def __init__(
        self,
        store: RateLimitStore,
        quota_timezone: tzinfo = DEFAULT_QUOTA_TIMEZONE,
        clock: Callable[[], datetime] = _utc_now,
        scope: str | None = None,
    ) -> None:
        """Initialize tracker.

        Args:
            store: Durable record store.
            quota_timezone: Timezone in which provider quotas reset.
            clock: Returns the current aware datetime (injectable for tests).
            scope: Prefix for storage keys, so quotas of different models on
                the same provider are tracked separately (e.g. "image").
        """
        self.store = store
        self.quota_timezone = quota_timezone
        self.scope = scope
        self._clock = clock
        self._lock = asyncio.Lock()

    def key(self, provider: ProviderType) -> str:
        """Storage key for a provider."""
        return f"{self.scope}:{provider.value}" if self.scope else provider.value

    def today(self) -> date:
        """Current calendar day in the quota timezone."""
        return self._clock().astimezone(self.quota_timezone).date()

    async def is_at_limit(self, provider: ProviderType) -> bool:
        """Check whether the provider's quota was exhausted today.

        A record from an earlier day is cleared as a side effect. A record
        dated in the future (clock skew) still counts as at-limit.

        Args:
            provider: Provider to check.

        Returns:
            True if the quota was exhausted today (or later).
        """
        async with self._lock:
            hit_date = await self.store.get_hit_date(self.key(provider))
            if hit_date is None:
                return False
            if hit_date >= self.today():
                return True
            await self.store.clear(self.key(provider))
            logger.info(f"Rate limit for {self.key(provider)} expired ({hit_date}), record cleared")
            return False

    async def record_rate_limit_hit(self, provider: ProviderType) -> bool:
        """Record that the provider's quota was exhausted today.

        Args:
            provider: Provider that reported the limit.

        Returns:
            True if a new record was written, False if today was already recorded.
        """
        async with self._lock:
            today = self.today()
            stored = await self.store.get_hit_date(self.key(provider))
            if stored is not None and stored >= today:
                return False
            await self.store.set_hit_date(self.key(provider), today)
            logger.warning(f"Rate limit hit recorded for {self.key(provider)} on {today}")
            return True

    async def reset(self, provider: ProviderType) -> None:
        """Clear the record for a provider."""
        async with self._lock:
            await self.store.clear(self.key(provider))
            logger.info(f"Rate limit record cleared for {self.key(provider)}")

    async def status(self, provider: ProviderType) -> date | None:
        """Current hit date after lazy expiry, or None when not limited."""
        if not await self.is_at_limit(provider):
            return None
        return await self.store.get_hit_date(self.key(provider))
