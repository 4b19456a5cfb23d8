"""In-process rate-limit store (tests, ephemeral CLIs)."""

from __future__ import annotations

from datetime import date

from hockey_ai.storage.base import RateLimitStore


class MemoryRateLimitStore(RateLimitStore):
    """Dictionary-backed store. Not durable across restarts."""

    def __init__(self, initial: dict[str, date] | None = None) -> None:
        self._records: dict[str, date] = dict(initial or {})

    async def get_hit_date(self, provider: str) -> date | None:
        return self._records.get(provider)

    async def set_hit_date(self, provider: str, day: date) -> None:
        self._records[provider] = day

    async def clear(self, provider: str) -> None:
        self._records.pop(provider, None)
