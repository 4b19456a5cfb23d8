"""
Pytest configuration and fixtures for hockey AI pipeline tests.

All HTTP traffic is served by httpx.MockTransport handlers; time is injected
through clock fixtures, so no test touches the network or sleeps for real.
"""
import os
from collections.abc import Callable
from datetime import datetime, timedelta
from zoneinfo import ZoneInfo

import httpx
import pytest

# Settings require at least one provider key
os.environ.setdefault("GEMINI_API_KEY", "test-gemini-key")

from hockey_ai.config import AuthMethod, ProviderType, Settings  # noqa: E402
from hockey_ai.core.circuit_breaker import CircuitBreaker  # noqa: E402
from hockey_ai.core.events import EventBus  # noqa: E402
from hockey_ai.core.executor import RequestExecutor, RetryPolicy  # noqa: E402
from hockey_ai.core.providers.base import ProviderConfig  # noqa: E402
from hockey_ai.services.analysis import AnalysisService  # noqa: E402
from hockey_ai.services.image_generation import ImageGenerationService  # noqa: E402
from hockey_ai.storage import MemoryRateLimitStore  # noqa: E402

PACIFIC = ZoneInfo("America/Los_Angeles")

Handler = Callable[[httpx.Request], httpx.Response]


class ManualClock:
    """Monotonic clock advanced by hand."""

    def __init__(self, start: float = 1000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class WallClock:
    """Aware datetime clock advanced by hand."""

    def __init__(self, start: datetime) -> None:
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def set(self, value: datetime) -> None:
        self.now = value

    def advance(self, **kwargs) -> None:
        self.now += timedelta(**kwargs)


class RecordingSleep:
    """Stand-in for asyncio.sleep that records requested delays."""

    def __init__(self) -> None:
        self.delays: list[float] = []

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)


def _gemini_text_body(text: str, usage: bool = False) -> dict:
    body = {"candidates": [{"content": {"role": "model", "parts": [{"text": text}]}}]}
    if usage:
        body["usageMetadata"] = {
            "promptTokenCount": 12,
            "candidatesTokenCount": 34,
            "totalTokenCount": 46,
        }
    return body


# ============================================
# Fixtures
# ============================================

@pytest.fixture
def text_body():
    """Factory for a generateContent response body carrying text."""
    return _gemini_text_body


@pytest.fixture
def manual_clock() -> ManualClock:
    return ManualClock()


@pytest.fixture
def wall_clock() -> WallClock:
    """Wall clock at 23:58 on 2025-01-15, Los Angeles time."""
    return WallClock(datetime(2025, 1, 15, 23, 58, tzinfo=PACIFIC))


@pytest.fixture
def recording_sleep() -> RecordingSleep:
    return RecordingSleep()


@pytest.fixture
def fast_policy() -> RetryPolicy:
    """Default retry counts, no real delays, short timeouts."""
    return RetryPolicy(
        max_retries=1,
        retry_delay=1.5,
        request_timeout=5.0,
        large_request_timeout=10.0,
        watchdog_timeout=10.0,
    )


@pytest.fixture
def gemini_config() -> ProviderConfig:
    return ProviderConfig(
        identity=ProviderType.GEMINI,
        base_url="https://gemini.test/v1beta",
        auth_method=AuthMethod.QUERY,
        api_key="gemini-key",
        model_name="gemini-2.5-flash",
        upload_url="https://gemini.test/upload/v1beta/files",
        inline_size_limit=1024,
        upload_size_limit=64 * 1024,
    )


@pytest.fixture
def fal_config() -> ProviderConfig:
    return ProviderConfig(
        identity=ProviderType.FAL,
        base_url="https://fal.test",
        auth_method=AuthMethod.KEY,
        api_key="fal-key",
        model_name="fal-ai/gemini-3-pro-image-preview/edit",
    )


@pytest.fixture
def make_executor(fast_policy: RetryPolicy, recording_sleep: RecordingSleep):
    """Factory: executor whose HTTP calls go to a MockTransport handler."""
    clients: list[httpx.AsyncClient] = []

    def factory(
        handler: Handler,
        provider: ProviderType = ProviderType.GEMINI,
        policy: RetryPolicy | None = None,
        breaker: CircuitBreaker | None = None,
        events: EventBus | None = None,
    ) -> RequestExecutor:
        client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
        clients.append(client)
        return RequestExecutor(
            provider,
            policy=policy or fast_policy,
            breaker=breaker,
            http_client=client,
            events=events,
            sleep=recording_sleep,
        )

    return factory


# ============================================
# Pytest Configuration
# ============================================

def pytest_configure(config):
    """Configure pytest with custom markers."""
    config.addinivalue_line(
        "markers", "fast: Fast unit tests (no external API calls)"
    )
    config.addinivalue_line(
        "markers", "slow: Slow tests (long-running operations)"
    )


# ============================================
# Pipeline fixtures (services over a fake backend)
# ============================================

class FakeBackend:
    """MockTransport handler answering by URL path.

    Each route holds a list of responses (or exceptions) consumed in order;
    the last one repeats.
    """

    def __init__(self) -> None:
        self.routes: dict[str, list] = {}
        self.requests: list[httpx.Request] = []

    def on(self, path: str, *responses) -> None:
        self.routes[path] = list(responses)

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        responses = self.routes.get(request.url.path)
        if not responses:
            return httpx.Response(404, json={"error": {"message": f"no route for {request.url.path}"}})
        step = responses.pop(0) if len(responses) > 1 else responses[0]
        if isinstance(step, Exception):
            raise step
        return step

    def count(self, path: str) -> int:
        return sum(1 for request in self.requests if request.url.path == path)


@pytest.fixture
def pipeline_settings():
    return Settings(
        _env_file=None,
        GEMINI_API_KEY="gemini-key",
        FAL_API_KEY="fal-key",
        RETRY_DELAY=0,
    )


@pytest.fixture
def backend() -> FakeBackend:
    return FakeBackend()


@pytest.fixture
async def backend_client(backend):
    async with httpx.AsyncClient(transport=httpx.MockTransport(backend)) as client:
        yield client


@pytest.fixture
def rate_store():
    return MemoryRateLimitStore()


@pytest.fixture
def analysis_service(pipeline_settings, rate_store, backend_client):
    return AnalysisService.from_settings(
        pipeline_settings, store=rate_store, events=EventBus(), http_client=backend_client
    )


@pytest.fixture
def image_service(pipeline_settings, rate_store, backend_client, analysis_service):
    return ImageGenerationService.from_settings(
        pipeline_settings,
        store=rate_store,
        events=analysis_service.events,
        http_client=backend_client,
    )
