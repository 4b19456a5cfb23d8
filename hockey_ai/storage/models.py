"""SQLAlchemy models for persisted rate-limit state.

Examples:
    >>> from hockey_ai.storage.models import RateLimitHit
    >>> hit = RateLimitHit(provider="gemini", hit_date=date(2025, 1, 15))
"""

from __future__ import annotations

from datetime import date, datetime

from sqlalchemy import Date, DateTime, String, func
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


class Base(DeclarativeBase):
    """SQLAlchemy declarative base class."""

    pass


class RateLimitHit(Base):
    """Day on which a provider's shared daily quota was exhausted.

    Attributes:
        provider: Provider identity (primary key)
        hit_date: Calendar day in the quota reset timezone
        updated_at: Last write time
    """

    __tablename__ = "rate_limit_hits"

    provider: Mapped[str] = mapped_column(String(64), primary_key=True)
    hit_date: Mapped[date] = mapped_column(Date, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        onupdate=func.now(),
    )

    def __repr__(self) -> str:
        return f"<RateLimitHit(provider={self.provider}, hit_date={self.hit_date})>"
