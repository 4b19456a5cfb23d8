"""Unit tests for the request executor.

Tests for hockey_ai/core/executor.py: retry, watchdog, circuit breaking
and cancellation. HTTP is served by httpx.MockTransport handlers.

Run with:
    pytest tests/unit/test_executor.py -v
    pytest tests/unit/test_executor.py -v -m fast
"""

import asyncio

import httpx
import pytest

from hockey_ai.config import MB, ProviderType
from hockey_ai.core.circuit_breaker import CircuitBreaker, CircuitState
from hockey_ai.core.events import EventBus, EventKind
from hockey_ai.core.executor import PreparedRequest, RetryPolicy
from hockey_ai.core.providers.base import (
    APIError,
    DecodingError,
    NetworkError,
    RateLimitError,
    RequestCancelledError,
    RequestTimeoutError,
    ServiceUnavailableError,
)


def decode_json(response: httpx.Response) -> dict:
    try:
        return response.json()
    except ValueError as e:
        raise DecodingError(ProviderType.GEMINI, str(e)) from e


def parse_error(response: httpx.Response):
    if response.status_code == 429:
        return RateLimitError(ProviderType.GEMINI)
    return APIError(ProviderType.GEMINI, f"HTTP {response.status_code}", response.status_code)


class Script:
    """Handler that replays a list of responses or exceptions."""

    def __init__(self, *steps):
        self.steps = list(steps)
        self.requests: list[httpx.Request] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        step = self.steps[min(len(self.requests), len(self.steps)) - 1]
        if isinstance(step, Exception):
            raise step
        return step

    @property
    def calls(self) -> int:
        return len(self.requests)


@pytest.fixture
def prepared():
    return PreparedRequest(
        url="https://gemini.test/v1beta/models/m:generateContent",
        params={"key": "secret"},
        content=b'{"contents": []}',
        timeout=5.0,
    )


@pytest.fixture
def breaker(manual_clock):
    return CircuitBreaker(name="gemini", clock=manual_clock)


@pytest.mark.fast
class TestRetryPolicy:
    """Tests for RetryPolicy."""

    def test_defaults(self):
        policy = RetryPolicy()
        assert policy.max_retries == 1
        assert policy.retry_delay == 1.5
        assert policy.watchdog_timeout == 150.0

    def test_linear_backoff(self):
        policy = RetryPolicy(retry_delay=1.5)
        assert policy.backoff(0) == 1.5
        assert policy.backoff(1) == 3.0

    def test_timeout_for_payload(self):
        policy = RetryPolicy()
        assert policy.timeout_for(1 * MB) == 90.0
        assert policy.timeout_for(11 * MB) == 120.0
        assert policy.timeout_for(1 * MB, has_video=True) == 120.0

    def test_max_retries_bounded(self):
        with pytest.raises(ValueError):
            RetryPolicy(max_retries=4)

    def test_from_settings(self):
        from hockey_ai.config import Settings

        settings = Settings(_env_file=None, GEMINI_API_KEY="k", MAX_RETRIES=2, RETRY_DELAY=0.5)
        policy = RetryPolicy.from_settings(settings)
        assert policy.max_retries == 2
        assert policy.retry_delay == 0.5


@pytest.mark.fast
@pytest.mark.asyncio
class TestExecuteSuccess:
    """Tests for the happy path."""

    async def test_success_decodes_body(self, make_executor, prepared, breaker):
        script = Script(httpx.Response(200, json={"ok": True}))
        executor = make_executor(script, breaker=breaker)

        result = await executor.execute(prepared, decode_json, parse_error)

        assert result == {"ok": True}
        assert script.calls == 1
        assert script.requests[0].url.params["key"] == "secret"
        assert breaker.failure_count == 0

    async def test_success_resets_breaker(self, make_executor, prepared, breaker):
        breaker.record_failure()
        breaker.record_failure()
        executor = make_executor(Script(httpx.Response(200, json={})), breaker=breaker)

        await executor.execute(prepared, decode_json, parse_error)

        assert breaker.failure_count == 0


@pytest.mark.fast
@pytest.mark.asyncio
class TestRetry:
    """Tests for retry classification."""

    async def test_timeout_retried_once(self, make_executor, prepared, breaker, recording_sleep):
        """A provider that always times out sees exactly two attempts."""
        script = Script(httpx.ReadTimeout("timed out"))
        executor = make_executor(script, breaker=breaker)

        with pytest.raises(RequestTimeoutError) as exc_info:
            await executor.execute(prepared, decode_json, parse_error)

        assert script.calls == 2
        assert exc_info.value.watchdog is False
        assert recording_sleep.delays == [1.5]
        assert breaker.failure_count == 1

    async def test_server_error_then_success(self, make_executor, prepared, breaker):
        script = Script(httpx.Response(503), httpx.Response(200, json={"ok": True}))
        executor = make_executor(script, breaker=breaker)

        assert await executor.execute(prepared, decode_json, parse_error) == {"ok": True}
        assert script.calls == 2
        assert breaker.failure_count == 0

    async def test_server_error_exhausts_retries(self, make_executor, prepared, breaker):
        script = Script(httpx.Response(500))
        executor = make_executor(script, breaker=breaker)

        with pytest.raises(APIError) as exc_info:
            await executor.execute(prepared, decode_json, parse_error)

        assert exc_info.value.status_code == 500
        assert script.calls == 2
        assert breaker.failure_count == 1

    async def test_client_error_not_retried(self, make_executor, prepared, breaker):
        script = Script(httpx.Response(400))
        executor = make_executor(script, breaker=breaker)

        with pytest.raises(APIError):
            await executor.execute(prepared, decode_json, parse_error)

        assert script.calls == 1
        assert breaker.failure_count == 1

    async def test_rate_limit_not_retried(self, make_executor, prepared, breaker):
        script = Script(httpx.Response(429))
        executor = make_executor(script, breaker=breaker)

        with pytest.raises(RateLimitError):
            await executor.execute(prepared, decode_json, parse_error)

        assert script.calls == 1

    async def test_connect_error_not_retried(self, make_executor, prepared):
        script = Script(httpx.ConnectError("refused"))
        executor = make_executor(script)

        with pytest.raises(NetworkError) as exc_info:
            await executor.execute(prepared, decode_json, parse_error)

        assert exc_info.value.retryable is False
        assert script.calls == 1

    async def test_connection_lost_retried(self, make_executor, prepared):
        script = Script(httpx.ReadError("reset"), httpx.Response(200, json={}))
        executor = make_executor(script)

        assert await executor.execute(prepared, decode_json, parse_error) == {}
        assert script.calls == 2

    async def test_backoff_is_linear(self, make_executor, prepared, recording_sleep):
        script = Script(httpx.Response(502))
        executor = make_executor(script, policy=RetryPolicy(max_retries=3, retry_delay=1.5))

        with pytest.raises(APIError):
            await executor.execute(prepared, decode_json, parse_error)

        assert script.calls == 4
        assert recording_sleep.delays == [1.5, 3.0, 4.5]

    async def test_no_retries_configured(self, make_executor, prepared):
        script = Script(httpx.Response(500))
        executor = make_executor(script, policy=RetryPolicy(max_retries=0))

        with pytest.raises(APIError):
            await executor.execute(prepared, decode_json, parse_error)

        assert script.calls == 1

    async def test_undecodable_success_counts_as_failure(self, make_executor, prepared, breaker):
        script = Script(httpx.Response(200, content=b"not json"))
        executor = make_executor(script, breaker=breaker)

        with pytest.raises(DecodingError):
            await executor.execute(prepared, decode_json, parse_error)

        assert script.calls == 1
        assert breaker.failure_count == 1


@pytest.mark.fast
@pytest.mark.asyncio
class TestWatchdog:
    """Tests for the watchdog ceiling."""

    async def test_watchdog_cancels_stuck_attempt(self, make_executor):
        calls = 0

        async def stuck(request):
            nonlocal calls
            calls += 1
            await asyncio.sleep(10)
            return httpx.Response(200)

        policy = RetryPolicy(watchdog_timeout=0.05, request_timeout=0.01)
        executor = make_executor(stuck, policy=policy)
        prepared = PreparedRequest(url="https://gemini.test/x", timeout=0.01)

        with pytest.raises(RequestTimeoutError) as exc_info:
            await executor.execute(prepared, decode_json, parse_error)

        assert exc_info.value.watchdog is True
        assert calls == 2

    async def test_watchdog_never_below_request_timeout(self, make_executor):
        async def slow(request):
            await asyncio.sleep(0.05)
            return httpx.Response(200, json={"ok": True})

        policy = RetryPolicy(watchdog_timeout=0.01)
        executor = make_executor(slow, policy=policy)
        prepared = PreparedRequest(url="https://gemini.test/x", timeout=1.0)

        assert await executor.execute(prepared, decode_json, parse_error) == {"ok": True}


@pytest.mark.fast
@pytest.mark.asyncio
class TestCircuitBreaking:
    """Tests for breaker integration."""

    async def test_open_circuit_skips_network(self, make_executor, prepared, breaker):
        for _ in range(3):
            breaker.record_failure()
        script = Script(httpx.Response(200, json={}))
        executor = make_executor(script, breaker=breaker)

        with pytest.raises(ServiceUnavailableError):
            await executor.execute(prepared, decode_json, parse_error)

        assert script.calls == 0
        assert breaker.failure_count == 3

    async def test_circuit_opening_during_backoff_aborts_retry(self, make_executor, prepared, breaker):
        script = Script(httpx.Response(500))

        async def open_circuit(delay):
            for _ in range(3):
                breaker.record_failure()

        executor = make_executor(script, breaker=breaker)
        executor._sleep = open_circuit

        with pytest.raises(ServiceUnavailableError):
            await executor.execute(prepared, decode_json, parse_error)

        assert script.calls == 1

    async def test_three_failed_requests_open_circuit(self, make_executor, prepared, breaker):
        script = Script(httpx.Response(400))
        executor = make_executor(script, breaker=breaker)

        for _ in range(3):
            with pytest.raises(APIError):
                await executor.execute(prepared, decode_json, parse_error)

        assert breaker.state == CircuitState.OPEN
        with pytest.raises(ServiceUnavailableError):
            await executor.execute(prepared, decode_json, parse_error)
        assert script.calls == 3

    @pytest.mark.parametrize(
        "transport_error",
        [
            httpx.ProxyError("proxy down"),
            httpx.LocalProtocolError("bad request framing"),
            httpx.DecodingError("bad gzip stream"),
            httpx.TooManyRedirects("redirect loop"),
        ],
    )
    async def test_other_transport_errors_open_circuit(
        self, make_executor, prepared, breaker, transport_error
    ):
        script = Script(transport_error)
        events = EventBus()
        received = []
        events.subscribe(received.append)
        executor = make_executor(script, breaker=breaker, events=events)

        for _ in range(3):
            with pytest.raises(NetworkError) as exc_info:
                await executor.execute(prepared, decode_json, parse_error)
            assert exc_info.value.retryable is False

        assert breaker.state == CircuitState.OPEN
        assert script.calls == 3
        assert [e.kind for e in received].count(EventKind.REQUEST_FAILED) == 3

    async def test_half_open_trial_success_closes(self, make_executor, prepared, breaker, manual_clock):
        for _ in range(3):
            breaker.record_failure()
        manual_clock.advance(60)
        executor = make_executor(Script(httpx.Response(200, json={})), breaker=breaker)

        await executor.execute(prepared, decode_json, parse_error)

        assert breaker.state == CircuitState.CLOSED


@pytest.mark.fast
@pytest.mark.asyncio
class TestEventsAndCancellation:
    """Tests for progress events and cancellation."""

    async def test_retry_events(self, make_executor, prepared):
        events = EventBus()
        received = []
        events.subscribe(received.append)
        script = Script(httpx.Response(503), httpx.Response(200, json={}))
        executor = make_executor(script, events=events)

        await executor.execute(prepared, decode_json, parse_error)

        assert [event.kind for event in received] == [
            EventKind.REQUEST_SENT,
            EventKind.RETRY_SCHEDULED,
            EventKind.REQUEST_SENT,
            EventKind.RESPONSE_RECEIVED,
        ]
        assert received[1].detail["delay"] == 1.5

    async def test_circuit_opened_event(self, make_executor, prepared, breaker):
        events = EventBus()
        received = []
        events.subscribe(received.append)
        breaker.record_failure()
        breaker.record_failure()
        executor = make_executor(Script(httpx.Response(401)), breaker=breaker, events=events)

        with pytest.raises(APIError):
            await executor.execute(prepared, decode_json, parse_error)

        kinds = [event.kind for event in received]
        assert EventKind.CIRCUIT_OPENED in kinds
        assert kinds[-1] == EventKind.REQUEST_FAILED

    async def test_cancel_active_requests(self, make_executor, prepared):
        started = asyncio.Event()

        async def hang(request):
            started.set()
            await asyncio.sleep(60)
            return httpx.Response(200)

        executor = make_executor(hang)
        task = asyncio.create_task(executor.execute(prepared, decode_json, parse_error))
        await started.wait()

        assert executor.cancel_active_requests() == 1
        with pytest.raises(RequestCancelledError):
            await task
        assert executor.registry.active_count == 0
