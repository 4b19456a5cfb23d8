"""Construction of providers, routers and trackers from settings.

Everything is built per call and passed down explicitly; there are no
process-wide singletons besides the cached Settings.

Tests:
    - tests/unit/test_services.py::TestFactory
"""

from __future__ import annotations

import httpx

from hockey_ai.config import AuthMethod, ProviderType, Settings
from hockey_ai.core.cancellation import RequestRegistry
from hockey_ai.core.circuit_breaker import CircuitBreaker
from hockey_ai.core.events import EventBus
from hockey_ai.core.executor import RequestExecutor, RetryPolicy
from hockey_ai.core.providers.base import ProviderConfig
from hockey_ai.core.providers.fal import FalProvider
from hockey_ai.core.providers.gemini import GeminiProvider
from hockey_ai.core.rate_limit import RateLimitTracker
from hockey_ai.core.router import ProviderRouter
from hockey_ai.storage import RateLimitStore, SQLRateLimitStore

ANALYSIS_SCOPE = "analysis"
IMAGE_SCOPE = "image"


def build_executor(
    identity: ProviderType,
    settings: Settings,
    events: EventBus,
    http_client: httpx.AsyncClient | None = None,
) -> RequestExecutor:
    """Executor with its own breaker and task registry."""
    return RequestExecutor(
        identity,
        policy=RetryPolicy.from_settings(settings),
        breaker=CircuitBreaker(
            name=identity.value,
            failure_threshold=settings.CIRCUIT_FAILURE_THRESHOLD,
            recovery_timeout=settings.CIRCUIT_RECOVERY_TIMEOUT,
        ),
        http_client=http_client,
        registry=RequestRegistry(),
        events=events,
    )


def analysis_provider_config(settings: Settings, identity: ProviderType) -> ProviderConfig:
    """ProviderConfig for shot/stick analysis on the primary or secondary."""
    if identity == ProviderType.GEMINI:
        return ProviderConfig(
            identity=identity,
            base_url=settings.GEMINI_BASE_URL,
            auth_method=settings.GEMINI_AUTH_METHOD,
            api_key=settings.GEMINI_API_KEY,
            model_name=settings.ANALYSIS_MODEL,
            upload_url=settings.GEMINI_UPLOAD_URL,
            inline_size_limit=settings.INLINE_SIZE_LIMIT,
            upload_size_limit=settings.UPLOAD_SIZE_LIMIT,
        )
    if identity == ProviderType.SECONDARY:
        return ProviderConfig(
            identity=identity,
            base_url=settings.SECONDARY_BASE_URL or "",
            auth_method=settings.SECONDARY_AUTH_METHOD,
            api_key=settings.SECONDARY_API_KEY,
            model_name=settings.SECONDARY_MODEL,
            upload_url=settings.SECONDARY_UPLOAD_URL,
            inline_size_limit=settings.INLINE_SIZE_LIMIT,
            upload_size_limit=settings.UPLOAD_SIZE_LIMIT,
        )
    raise ValueError(f"{identity.value} does not serve analysis requests")


def image_provider_config(settings: Settings, identity: ProviderType) -> ProviderConfig:
    """ProviderConfig for card image generation on Gemini or fal.ai."""
    if identity == ProviderType.GEMINI:
        return ProviderConfig(
            identity=identity,
            base_url=settings.GEMINI_BASE_URL,
            auth_method=AuthMethod.HEADER,
            api_key=settings.GEMINI_API_KEY,
            model_name=settings.IMAGE_MODEL,
        )
    if identity == ProviderType.FAL:
        return ProviderConfig(
            identity=identity,
            base_url=settings.FAL_BASE_URL,
            auth_method=AuthMethod.KEY,
            api_key=settings.FAL_API_KEY,
            model_name=settings.FAL_IMAGE_MODEL,
        )
    raise ValueError(f"{identity.value} does not serve image requests")


def build_rate_limit_store(settings: Settings) -> RateLimitStore:
    return SQLRateLimitStore(settings.RATE_LIMIT_DATABASE_URL)


def build_tracker(settings: Settings, store: RateLimitStore, scope: str) -> RateLimitTracker:
    return RateLimitTracker(store, settings.quota_timezone, scope=scope)


def build_analysis_router(
    settings: Settings,
    store: RateLimitStore,
    events: EventBus,
    http_client: httpx.AsyncClient | None = None,
) -> ProviderRouter:
    """Gemini primary with optional Gemini-compatible secondary."""
    primary = GeminiProvider(
        analysis_provider_config(settings, ProviderType.GEMINI),
        executor=build_executor(ProviderType.GEMINI, settings, events, http_client),
        upload_timeout=settings.UPLOAD_TIMEOUT,
        image_timeout=settings.IMAGE_REQUEST_TIMEOUT,
    )
    secondary = None
    if settings.has_provider(ProviderType.SECONDARY):
        secondary = GeminiProvider(
            analysis_provider_config(settings, ProviderType.SECONDARY),
            executor=build_executor(ProviderType.SECONDARY, settings, events, http_client),
            upload_timeout=settings.UPLOAD_TIMEOUT,
            image_timeout=settings.IMAGE_REQUEST_TIMEOUT,
        )
    return ProviderRouter(
        primary,
        secondary,
        build_tracker(settings, store, ANALYSIS_SCOPE),
        events=events,
    )


def build_image_router(
    settings: Settings,
    store: RateLimitStore,
    events: EventBus,
    http_client: httpx.AsyncClient | None = None,
) -> ProviderRouter:
    """Gemini image model primary with optional fal.ai secondary."""
    primary = GeminiProvider(
        image_provider_config(settings, ProviderType.GEMINI),
        executor=build_executor(ProviderType.GEMINI, settings, events, http_client),
        image_timeout=settings.IMAGE_REQUEST_TIMEOUT,
    )
    secondary = None
    if settings.has_provider(ProviderType.FAL):
        secondary = FalProvider(
            image_provider_config(settings, ProviderType.FAL),
            executor=build_executor(ProviderType.FAL, settings, events, http_client),
            image_timeout=settings.IMAGE_REQUEST_TIMEOUT,
        )
    return ProviderRouter(
        primary,
        secondary,
        build_tracker(settings, store, IMAGE_SCOPE),
        events=events,
    )
