"""Unit tests for the analysis and image services and their factory.

Services are built from Settings exactly as the app builds them; HTTP goes
to a FakeBackend through httpx.MockTransport.

Run with:
    pytest tests/unit/test_services.py -v
"""

import base64
import json
from datetime import date
from unittest.mock import AsyncMock

import httpx
import pytest
from pydantic import BaseModel

from hockey_ai.config import AuthMethod, ProviderType, Settings
from hockey_ai.core.events import EventBus, EventKind
from hockey_ai.core.providers.base import (
    APIError,
    AspectRatio,
    DecodingError,
    ImageSize,
    MediaItem,
    MediaRole,
    RateLimitError,
)
from hockey_ai.core.providers.fal import FalProvider
from hockey_ai.core.providers.gemini import GeminiProvider
from hockey_ai.services.analysis import AnalysisService
from hockey_ai.services.factory import (
    analysis_provider_config,
    build_analysis_router,
    build_image_router,
    image_provider_config,
)
from hockey_ai.services.image_generation import ImageGenerationService
from hockey_ai.storage import MemoryRateLimitStore, SQLRateLimitStore

ANALYSIS_PATH = "/v1beta/models/gemini-2.5-flash:generateContent"
GEMINI_IMAGE_PATH = "/v1beta/models/gemini-3-pro-image-preview:generateContent"
FAL_IMAGE_PATH = "/fal-ai/gemini-3-pro-image-preview/edit"


class ShotRating(BaseModel):
    score: int
    notes: str


def gemini_image_body(data: bytes) -> dict:
    return {
        "candidates": [
            {"content": {"parts": [{"inlineData": {"mimeType": "image/png", "data": base64.b64encode(data).decode()}}]}}
        ]
    }


def quota_exhausted() -> httpx.Response:
    return httpx.Response(
        429, json={"error": {"code": 429, "message": "Quota exceeded", "status": "RESOURCE_EXHAUSTED"}}
    )


@pytest.mark.fast
class TestFactory:
    """Tests for provider and router construction."""

    def test_analysis_router_without_secondary(self, pipeline_settings):
        router = build_analysis_router(pipeline_settings, MemoryRateLimitStore(), EventBus())
        assert isinstance(router.primary, GeminiProvider)
        assert router.secondary is None
        assert router.tracker.scope == "analysis"
        assert router.primary.config.upload_url is not None

    def test_analysis_router_with_secondary(self):
        settings = Settings(
            _env_file=None,
            GEMINI_API_KEY="g",
            SECONDARY_API_KEY="s",
            SECONDARY_BASE_URL="https://proxy.test/v1beta",
        )
        router = build_analysis_router(settings, MemoryRateLimitStore(), EventBus())
        assert router.secondary.identity == ProviderType.SECONDARY
        assert router.secondary.config.auth_method == AuthMethod.BEARER
        assert router.secondary.config.upload_url is None

    def test_image_router(self, pipeline_settings):
        router = build_image_router(pipeline_settings, MemoryRateLimitStore(), EventBus())
        assert router.primary.config.model_name == "gemini-3-pro-image-preview"
        assert router.primary.config.auth_method == AuthMethod.HEADER
        assert isinstance(router.secondary, FalProvider)
        assert router.tracker.scope == "image"

    def test_executors_have_separate_breakers(self, pipeline_settings):
        router = build_image_router(pipeline_settings, MemoryRateLimitStore(), EventBus())
        assert router.primary.executor.breaker is not router.secondary.executor.breaker
        assert router.primary.executor.breaker.failure_threshold == 3

    def test_unsupported_identities(self, pipeline_settings):
        with pytest.raises(ValueError):
            analysis_provider_config(pipeline_settings, ProviderType.FAL)
        with pytest.raises(ValueError):
            image_provider_config(pipeline_settings, ProviderType.SECONDARY)


@pytest.mark.fast
@pytest.mark.asyncio
class TestAnalysisService:
    """Tests for AnalysisService."""

    async def test_analyze_video(self, analysis_service, backend, text_body):
        backend.on(ANALYSIS_PATH, httpx.Response(200, json=text_body("Good release")))

        response = await analysis_service.analyze_video(b"clip", "Rate this shot", frame_rate=60)

        assert response.text == "Good release"
        assert response.provider == ProviderType.GEMINI
        body = json.loads(backend.requests[0].content)
        video_part = body["contents"][0]["parts"][0]
        assert video_part["inlineData"]["mimeType"] == "video/mp4"
        assert video_part["videoMetadata"] == {"fps": 24}

    async def test_analyze_videos_keeps_order(self, analysis_service, backend, text_body):
        backend.on(ANALYSIS_PATH, httpx.Response(200, json=text_body("ok")))

        await analysis_service.analyze_videos([b"front", b"side"], "Compare angles")

        parts = json.loads(backend.requests[0].content)["contents"][0]["parts"]
        assert [base64.b64decode(p["inlineData"]["data"]) for p in parts[:2]] == [b"front", b"side"]
        assert parts[2] == {"text": "Compare angles"}

    async def test_generate_text(self, analysis_service, backend, text_body):
        backend.on(ANALYSIS_PATH, httpx.Response(200, json=text_body("Hi")))
        response = await analysis_service.generate_text("Say hi")
        assert response.text == "Hi"

    async def test_analyze_structured(self, analysis_service, backend, text_body):
        answer = '```json\n{"score": 8, "notes": "quick release"}\n```'
        backend.on(ANALYSIS_PATH, httpx.Response(200, json=text_body(answer)))
        item = MediaItem(data=b"img", mime_type="image/jpeg", role=MediaRole.IMAGE)

        rating = await analysis_service.analyze_structured([item], "Rate", ShotRating)

        assert rating == ShotRating(score=8, notes="quick release")

    async def test_analyze_structured_invalid(self, analysis_service, backend, text_body):
        backend.on(ANALYSIS_PATH, httpx.Response(200, json=text_body('{"score": "high"}')))

        with pytest.raises(DecodingError, match="ShotRating"):
            await analysis_service.analyze_structured([], "Rate", ShotRating)

    async def test_rate_limit_without_secondary(self, analysis_service, backend, rate_store):
        backend.on(ANALYSIS_PATH, quota_exhausted())

        with pytest.raises(RateLimitError):
            await analysis_service.generate_text("x")

        assert backend.count(ANALYSIS_PATH) == 1
        assert await rate_store.get_hit_date("analysis:gemini") is not None

    async def test_status(self, analysis_service):
        status = await analysis_service.status()
        assert status["gemini"]["circuit"]["status"] == "Normal"
        assert status["gemini"]["rate_limited_on"] is None

    async def test_close_closes_router(self, analysis_service):
        analysis_service.router.close = AsyncMock()
        await analysis_service.close()
        analysis_service.router.close.assert_awaited_once()


@pytest.mark.fast
@pytest.mark.asyncio
class TestImageGenerationService:
    """Tests for ImageGenerationService."""

    async def test_gemini_image(self, image_service, backend):
        backend.on(GEMINI_IMAGE_PATH, httpx.Response(200, json=gemini_image_body(b"card")))

        response = await image_service.generate_image(
            "Hockey card portrait",
            aspect_ratio=AspectRatio.NINE_BY_SIXTEEN,
            image_size=ImageSize.ONE_K,
        )

        assert response.image_data == b"card"
        assert response.fallback_used is False
        request = backend.requests[0]
        assert request.headers["x-goog-api-key"] == "gemini-key"
        config = json.loads(request.content)["generationConfig"]
        assert config["imageConfig"] == {"aspectRatio": "9:16", "imageSize": "1K"}

    async def test_falls_back_to_fal_and_remembers(self, image_service, backend, rate_store):
        fal_image = f"data:image/png;base64,{base64.b64encode(b'fal-card').decode()}"
        backend.on(GEMINI_IMAGE_PATH, quota_exhausted())
        backend.on(FAL_IMAGE_PATH, httpx.Response(200, json={"images": [{"url": fal_image}]}))
        received = []
        image_service.events.subscribe(received.append)

        first = await image_service.generate_image("Card")
        second = await image_service.generate_image("Card")

        assert first.image_data == b"fal-card"
        assert first.fallback_used is True
        assert first.provider == ProviderType.FAL
        assert second.fallback_used is False
        assert backend.count(GEMINI_IMAGE_PATH) == 1
        assert backend.count(FAL_IMAGE_PATH) == 2
        assert EventKind.FALLBACK_TRIGGERED in [event.kind for event in received]
        assert await rate_store.get_hit_date("image:gemini") is not None
        assert await rate_store.get_hit_date("analysis:gemini") is None

    async def test_reset_rate_limit(self, image_service, backend):
        backend.on(GEMINI_IMAGE_PATH, quota_exhausted(), httpx.Response(200, json=gemini_image_body(b"g")))
        backend.on(FAL_IMAGE_PATH, httpx.Response(200, json={"images": [{"url": "data:image/png;base64,AA=="}]}))

        await image_service.generate_image("Card")
        await image_service.reset_rate_limit()
        response = await image_service.generate_image("Card")

        assert response.provider == ProviderType.GEMINI
        assert backend.count(GEMINI_IMAGE_PATH) == 2

    async def test_fal_busy_is_not_recorded(self, image_service, backend, rate_store):
        await rate_store.set_hit_date("image:gemini", date(2999, 1, 1))
        backend.on(FAL_IMAGE_PATH, httpx.Response(429))

        with pytest.raises(APIError, match="busy"):
            await image_service.generate_image("Card")

        assert await rate_store.get_hit_date("image:fal") is None


@pytest.mark.fast
@pytest.mark.asyncio
class TestServiceStoreOwnership:
    """Services dispose the rate-limit store they built themselves."""

    @pytest.fixture
    def sqlite_settings(self, tmp_path):
        return Settings(
            _env_file=None,
            GEMINI_API_KEY="gemini-key",
            FAL_API_KEY="fal-key",
            RETRY_DELAY=0,
            RATE_LIMIT_DATABASE_URL=f"sqlite+aiosqlite:///{tmp_path / 'limits.db'}",
        )

    async def test_analysis_service_disposes_built_store(
        self, sqlite_settings, backend, backend_client, text_body
    ):
        backend.on(ANALYSIS_PATH, httpx.Response(200, json=text_body("Hi")))
        service = AnalysisService.from_settings(sqlite_settings, http_client=backend_client)
        store = service.router.tracker.store
        assert isinstance(store, SQLRateLimitStore)

        await service.generate_text("Say hi")
        assert store._engine is not None
        await service.close()

        assert store._engine is None

    async def test_image_service_disposes_built_store(self, sqlite_settings, backend, backend_client):
        backend.on(GEMINI_IMAGE_PATH, httpx.Response(200, json=gemini_image_body(b"card")))
        service = ImageGenerationService.from_settings(sqlite_settings, http_client=backend_client)
        store = service.router.tracker.store

        await service.generate_image("Card")
        await service.close()

        assert store._engine is None

    async def test_injected_store_left_open(self, pipeline_settings, backend_client):
        store = MemoryRateLimitStore()
        store.close = AsyncMock()
        service = AnalysisService.from_settings(pipeline_settings, store=store, http_client=backend_client)

        await service.close()

        store.close.assert_not_awaited()
