"""Hockey card image generation service.

Gemini's image model is the primary provider; fal.ai runs the same model
without a shared daily quota and takes over once Gemini reports its limit.

Examples:
    >>> service = ImageGenerationService.from_settings()
    >>> response = await service.generate_image(
    ...     "Hockey card portrait, home jersey",
    ...     reference_images=[player_photo],
    ... )
    >>> Path("card.png").write_bytes(response.image_data)

Tests:
    - tests/unit/test_services.py::TestImageGenerationService
"""

from __future__ import annotations

import logging
from typing import Any

import httpx

from hockey_ai.config import Settings, get_settings
from hockey_ai.core.events import EventBus
from hockey_ai.core.providers.base import (
    AspectRatio,
    GenerationRequest,
    GenerationResponse,
    ImageSize,
    MediaItem,
    OutputModality,
)
from hockey_ai.core.router import ProviderRouter
from hockey_ai.services.factory import build_image_router, build_rate_limit_store
from hockey_ai.storage import RateLimitStore

logger = logging.getLogger(__name__)


class ImageGenerationService:
    """Generate images with rate-limit-aware provider fallback.

    Attributes:
        router: Image provider router
        events: Event sink shared by all providers
    """

    def __init__(
        self,
        router: ProviderRouter,
        events: EventBus | None = None,
        owned_store: RateLimitStore | None = None,
    ) -> None:
        self.router = router
        self.events = events or router.events
        self._owned_store = owned_store

    @classmethod
    def from_settings(
        cls,
        settings: Settings | None = None,
        store: RateLimitStore | None = None,
        events: EventBus | None = None,
        http_client: httpx.AsyncClient | None = None,
    ) -> ImageGenerationService:
        settings = settings or get_settings()
        events = events or EventBus()
        owned_store = None
        if store is None:
            store = owned_store = build_rate_limit_store(settings)
        router = build_image_router(settings, store, events, http_client)
        return cls(router, events, owned_store)

    async def generate_image(
        self,
        prompt: str,
        aspect_ratio: AspectRatio = AspectRatio.THREE_BY_FOUR,
        image_size: ImageSize = ImageSize.TWO_K,
        reference_images: list[MediaItem] | None = None,
    ) -> GenerationResponse:
        """Generate one image.

        Args:
            prompt: Image prompt.
            aspect_ratio: Output aspect ratio.
            image_size: Output resolution.
            reference_images: Up to 14 images guiding generation.

        Returns:
            GenerationResponse with ``image_data`` set.
        """
        request = GenerationRequest(
            prompt=prompt,
            output=OutputModality.IMAGE,
            aspect_ratio=aspect_ratio,
            image_size=image_size,
            reference_images=reference_images or [],
        )
        logger.info(
            f"Image request: {aspect_ratio.value} {image_size.value}, "
            f"{len(request.reference_images)} reference image(s)"
        )
        response = await self.router.execute_with_fallback(request)
        logger.info(
            f"Image generated by {response.provider.value} "
            f"({len(response.image_data or b'')} bytes, {response.latency_ms}ms)"
        )
        return response

    def cancel_active_requests(self) -> int:
        return self.router.cancel_active_requests()

    async def status(self) -> dict[str, Any]:
        return await self.router.status()

    async def reset_rate_limit(self) -> None:
        """Clear the recorded Gemini limit (manual override)."""
        await self.router.tracker.reset(self.router.primary.identity)

    async def close(self) -> None:
        await self.router.close()
        if self._owned_store is not None:
            await self._owned_store.close()
