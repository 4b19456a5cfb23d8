"""Shot and stick analysis service.

Facade over the analysis ProviderRouter: wraps raw media bytes into
MediaItems, sends them with a prompt, and optionally validates the JSON
answer against a Pydantic model.

Examples:
    >>> service = AnalysisService.from_settings()
    >>> response = await service.analyze_video(clip_bytes, "Rate this wrist shot")
    >>> print(response.text)

    >>> class ShotRating(BaseModel):
    ...     score: int
    >>> rating = await service.analyze_structured([clip], prompt, ShotRating)

Tests:
    - tests/unit/test_services.py::TestAnalysisService
"""

from __future__ import annotations

import json
import logging
from typing import Any, TypeVar

import httpx
from pydantic import BaseModel, ValidationError

from hockey_ai.config import Settings, get_settings
from hockey_ai.core.events import EventBus
from hockey_ai.core.providers.base import (
    DecodingError,
    GenerationRequest,
    GenerationResponse,
    InvalidResponseError,
    MediaItem,
    MediaRole,
)
from hockey_ai.core.router import ProviderRouter
from hockey_ai.services.factory import build_analysis_router, build_rate_limit_store
from hockey_ai.storage import RateLimitStore

logger = logging.getLogger(__name__)

T = TypeVar("T", bound=BaseModel)


def _strip_code_fence(text: str) -> str:
    stripped = text.strip()
    if stripped.startswith("```"):
        stripped = stripped.split("\n", 1)[1] if "\n" in stripped else ""
        if stripped.rstrip().endswith("```"):
            stripped = stripped.rstrip()[:-3]
    return stripped.strip()


class AnalysisService:
    """AI analysis of shots and sticks from images and videos.

    Attributes:
        router: Analysis provider router
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
    ) -> AnalysisService:
        """Build the service and its providers from settings."""
        settings = settings or get_settings()
        events = events or EventBus()
        owned_store = None
        if store is None:
            store = owned_store = build_rate_limit_store(settings)
        router = build_analysis_router(settings, store, events, http_client)
        return cls(router, events, owned_store)

    async def analyze(
        self,
        media: list[MediaItem],
        prompt: str,
        generation_config: dict[str, Any] | None = None,
    ) -> GenerationResponse:
        """Send media and a prompt through the router.

        Args:
            media: Media items, in the order they should appear.
            prompt: Analysis prompt.
            generation_config: Overrides the provider default.

        Returns:
            GenerationResponse with the model's text.
        """
        request = GenerationRequest(prompt=prompt, media=media, generation_config=generation_config)
        logger.info(
            f"Analysis request: {len(media)} media item(s), "
            f"{sum(item.size for item in media)} bytes"
        )
        return await self.router.execute_with_fallback(request)

    async def analyze_video(
        self,
        video: bytes,
        prompt: str,
        mime_type: str = "video/mp4",
        frame_rate: int | None = None,
        generation_config: dict[str, Any] | None = None,
    ) -> GenerationResponse:
        item = MediaItem(data=video, mime_type=mime_type, role=MediaRole.VIDEO, frame_rate=frame_rate)
        return await self.analyze([item], prompt, generation_config)

    async def analyze_videos(
        self,
        videos: list[bytes],
        prompt: str,
        mime_type: str = "video/mp4",
        frame_rate: int | None = None,
        generation_config: dict[str, Any] | None = None,
    ) -> GenerationResponse:
        """Analyze several angles of the same shot in one request."""
        items = [
            MediaItem(
                data=video,
                mime_type=mime_type,
                role=MediaRole.VIDEO,
                frame_rate=frame_rate,
                display_name=f"video_{index + 1}_upload",
            )
            for index, video in enumerate(videos)
        ]
        return await self.analyze(items, prompt, generation_config)

    async def analyze_image(
        self,
        image: bytes,
        prompt: str,
        mime_type: str = "image/jpeg",
        generation_config: dict[str, Any] | None = None,
    ) -> GenerationResponse:
        item = MediaItem(data=image, mime_type=mime_type, role=MediaRole.IMAGE)
        return await self.analyze([item], prompt, generation_config)

    async def generate_text(
        self,
        prompt: str,
        generation_config: dict[str, Any] | None = None,
    ) -> GenerationResponse:
        """Text-only request (uses the provider's default generation config)."""
        return await self.analyze([], prompt, generation_config)

    async def analyze_structured(
        self,
        media: list[MediaItem],
        prompt: str,
        response_model: type[T],
        generation_config: dict[str, Any] | None = None,
    ) -> T:
        """Analyze and validate the JSON answer.

        Raises:
            DecodingError: If the answer is not valid JSON for response_model.
        """
        response = await self.analyze(media, prompt, generation_config)
        if response.text is None:
            raise InvalidResponseError(response.provider, "No text in response")
        try:
            return response_model.model_validate(json.loads(_strip_code_fence(response.text)))
        except (json.JSONDecodeError, ValidationError) as e:
            raise DecodingError(response.provider, f"{response_model.__name__}: {e}") from e

    def cancel_active_requests(self) -> int:
        return self.router.cancel_active_requests()

    async def status(self) -> dict[str, Any]:
        return await self.router.status()

    async def close(self) -> None:
        await self.router.close()
        if self._owned_store is not None:
            await self._owned_store.close()
