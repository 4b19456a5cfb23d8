"""Provider router with rate-limit-aware selection and one-hop fallback.

Selection:
    1. Primary, if configured and not at its daily limit.
    2. Otherwise the secondary, if configured.
    3. Otherwise the primary anyway (its quota may have reset since the
       hit was recorded).

Fallback:
    When the selected provider reports a rate-limit condition, the hit is
    recorded for that provider. If it was the primary and a secondary is
    configured, the request runs once against the secondary and that
    outcome is final. Otherwise the RateLimitError surfaces.

Examples:
    >>> router = ProviderRouter(primary=gemini, secondary=fal, tracker=tracker)
    >>> response = await router.execute_with_fallback(request)
    >>> response.fallback_used
    False

Tests:
    - tests/unit/test_router.py
"""

from __future__ import annotations

import logging
from typing import Any

from hockey_ai.core.events import EventBus, EventKind
from hockey_ai.core.providers.base import (
    GenerationProvider,
    GenerationRequest,
    GenerationResponse,
    ProviderError,
    is_rate_limit_error,
)
from hockey_ai.core.rate_limit import RateLimitTracker

logger = logging.getLogger(__name__)


class ProviderRouter:
    """Route generation requests between a primary and a secondary provider.

    Attributes:
        primary: Preferred provider
        secondary: Fallback provider (optional)
        tracker: Persisted daily rate-limit state
        events: Event sink for fallback notifications
    """

    def __init__(
        self,
        primary: GenerationProvider,
        secondary: GenerationProvider | None,
        tracker: RateLimitTracker,
        events: EventBus | None = None,
    ) -> None:
        if secondary is not None and secondary.identity == primary.identity:
            raise ValueError("Primary and secondary providers must differ")
        self.primary = primary
        self.secondary = secondary
        self.tracker = tracker
        self.events = events or EventBus()

    @property
    def has_secondary(self) -> bool:
        return self.secondary is not None and self.secondary.is_configured

    async def select_provider(self) -> GenerationProvider:
        """Choose the provider for a new logical call."""
        if self.primary.is_configured and not await self.tracker.is_at_limit(self.primary.identity):
            return self.primary
        if self.has_secondary:
            logger.info(
                f"Primary {self.primary.identity.value} unavailable or at daily limit, "
                f"using {self.secondary.identity.value}"
            )
            return self.secondary
        logger.warning(
            f"No alternative to {self.primary.identity.value}, trying it despite recorded limit"
        )
        return self.primary

    def _alternate(self, provider: GenerationProvider) -> GenerationProvider | None:
        if provider is self.primary and self.has_secondary:
            return self.secondary
        return None

    async def execute_with_fallback(self, request: GenerationRequest) -> GenerationResponse:
        """Run a request with at most one fallback hop.

        Args:
            request: The generation request.

        Returns:
            GenerationResponse; ``fallback_used`` is True when the alternate
            provider produced it.

        Raises:
            RateLimitError: If rate limited and no alternate provider exists.
            ProviderError: Any other failure of the final attempt.
        """
        provider = await self.select_provider()
        try:
            return await provider.generate(request)
        except ProviderError as error:
            if not is_rate_limit_error(error):
                raise
            await self.tracker.record_rate_limit_hit(provider.identity)
            alternate = self._alternate(provider)
            if alternate is None:
                logger.warning(f"Rate limited on {provider.identity.value}, no fallback available")
                raise

        logger.warning(
            f"Rate limited on {provider.identity.value}, falling back to {alternate.identity.value}"
        )
        self.events.publish(
            EventKind.FALLBACK_TRIGGERED,
            alternate.identity,
            from_provider=provider.identity.value,
        )
        response = await alternate.generate(request)
        return response.model_copy(update={"fallback_used": True})

    def cancel_active_requests(self) -> int:
        """Cancel in-flight requests on both providers."""
        cancelled = self.primary.cancel_active_requests()
        if self.secondary is not None:
            cancelled += self.secondary.cancel_active_requests()
        return cancelled

    async def status(self) -> dict[str, Any]:
        """Provider, breaker and rate-limit state for health reporting."""
        providers = [self.primary] + ([self.secondary] if self.secondary else [])
        result: dict[str, Any] = {}
        for provider in providers:
            hit_date = await self.tracker.status(provider.identity)
            result[provider.identity.value] = {
                **provider.status(),
                "rate_limited_on": hit_date.isoformat() if hit_date else None,
            }
        return result

    async def close(self) -> None:
        await self.primary.close()
        if self.secondary is not None:
            await self.secondary.close()
