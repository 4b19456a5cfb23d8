"""Durable storage for rate-limit records.

Examples:
    >>> from hockey_ai.storage import SQLRateLimitStore
    >>> store = SQLRateLimitStore("sqlite+aiosqlite:///./rate_limits.db")
    >>> await store.init()
    >>> await store.set_hit_date("gemini", date(2025, 1, 15))
"""

from hockey_ai.storage.base import RateLimitStore
from hockey_ai.storage.memory import MemoryRateLimitStore
from hockey_ai.storage.sql import SQLRateLimitStore

__all__ = [
    "MemoryRateLimitStore",
    "RateLimitStore",
    "SQLRateLimitStore",
]
