"""Request executor with bounded retry, watchdog and circuit breaking.

Sends one logical request (a fully built HTTP request) to a provider:

1. The circuit breaker is consulted before every physical attempt,
   including retries. An open circuit fails with ServiceUnavailableError
   without touching the network.
2. Each attempt runs under a per-attempt HTTP timeout and an independent
   watchdog ceiling (``asyncio.timeout``) that cancels a stuck attempt.
3. Timeouts, lost connections and 5xx responses are retried with linear
   backoff (``retry_delay * (retry_count + 1)``) up to ``max_retries``.
4. Other 4xx responses (including 429, surfaced as RateLimitError) fail
   immediately and count as breaker failures.
5. A 2xx body is decoded; success is recorded only after a full decode.
   A decode failure is surfaced and counts as a breaker failure.

The whole logical call runs as one task registered with a RequestRegistry,
so ``cancel_active_requests()`` can abort it at any suspension point.

Examples:
    >>> executor = RequestExecutor(ProviderType.GEMINI, RetryPolicy())
    >>> text = await executor.execute(prepared, decode=decode_text, parse_error=parse_error)

Tests:
    - tests/unit/test_executor.py
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Callable
from typing import Any, TypeVar

import httpx
from pydantic import BaseModel, Field

from hockey_ai.config import MB, ProviderType, Settings
from hockey_ai.core.cancellation import RequestRegistry
from hockey_ai.core.circuit_breaker import CircuitBreaker, CircuitState
from hockey_ai.core.events import EventBus, EventKind
from hockey_ai.core.providers.base import (
    InvalidURLError,
    NetworkError,
    ProviderError,
    RequestTimeoutError,
    ServiceUnavailableError,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")

Decoder = Callable[[httpx.Response], T]
ErrorParser = Callable[[httpx.Response], ProviderError]

SLOW_REQUEST_WARNING = 30.0
SLOW_REQUEST_INFO = 10.0


class RetryPolicy(BaseModel):
    """Retry and timeout parameters for one executor.

    Attributes:
        max_retries: Retries per logical request
        retry_delay: Base delay, multiplied by (retry_count + 1)
        request_timeout: Per-attempt timeout for small payloads
        large_request_timeout: Per-attempt timeout for video or large payloads
        watchdog_timeout: Ceiling after which an attempt is cancelled
        large_payload_threshold: Body size above which a payload is "large"
    """

    max_retries: int = Field(default=1, ge=0, le=3)
    retry_delay: float = Field(default=1.5, ge=0)
    request_timeout: float = Field(default=90.0, gt=0)
    large_request_timeout: float = Field(default=120.0, gt=0)
    watchdog_timeout: float = Field(default=150.0, gt=0)
    large_payload_threshold: int = Field(default=10 * MB, gt=0)

    @classmethod
    def from_settings(cls, settings: Settings) -> RetryPolicy:
        return cls(
            max_retries=settings.MAX_RETRIES,
            retry_delay=settings.RETRY_DELAY,
            request_timeout=settings.REQUEST_TIMEOUT,
            large_request_timeout=settings.LARGE_REQUEST_TIMEOUT,
            watchdog_timeout=settings.WATCHDOG_TIMEOUT,
        )

    def timeout_for(self, payload_size: int, has_video: bool = False) -> float:
        """Per-attempt timeout for a payload."""
        if has_video or payload_size > self.large_payload_threshold:
            return self.large_request_timeout
        return self.request_timeout

    def backoff(self, retry_count: int) -> float:
        """Delay before the retry that follows attempt ``retry_count``."""
        return self.retry_delay * (retry_count + 1)


class PreparedRequest(BaseModel):
    """A fully built HTTP request.

    Credentials passed as query parameters live in ``params`` so that the
    logged ``url`` never contains them.
    """

    method: str = "POST"
    url: str
    params: dict[str, str] = Field(default_factory=dict, repr=False)
    headers: dict[str, str] = Field(default_factory=dict, repr=False)
    content: bytes = Field(default=b"", repr=False)
    timeout: float = Field(gt=0)
    label: str = "generate"

    @property
    def size(self) -> int:
        return len(self.content)


class RequestExecutor:
    """Sends requests to one provider with retry, watchdog and breaker.

    Attributes:
        provider: Provider identity
        policy: Retry and timeout policy
        breaker: Circuit breaker for this provider
        registry: Tracks in-flight tasks for cancellation
        events: Event sink for progress notifications
    """

    def __init__(
        self,
        provider: ProviderType,
        policy: RetryPolicy | None = None,
        breaker: CircuitBreaker | None = None,
        http_client: httpx.AsyncClient | None = None,
        registry: RequestRegistry | None = None,
        events: EventBus | None = None,
        sleep: Callable[[float], Any] = asyncio.sleep,
    ) -> None:
        """Initialize executor.

        Args:
            provider: Provider identity.
            policy: Retry and timeout policy (defaults if omitted).
            breaker: Circuit breaker (a fresh one if omitted).
            http_client: Shared httpx client (created lazily if omitted).
            registry: Task registry for cancellation.
            events: Event sink.
            sleep: Awaitable sleep used between retries (injectable for tests).
        """
        self.provider = provider
        self.policy = policy or RetryPolicy()
        self.breaker = breaker or CircuitBreaker(name=provider.value)
        self.registry = registry or RequestRegistry()
        self.events = events or EventBus()
        self._client = http_client
        self._owns_client = http_client is None
        self._sleep = sleep

    @property
    def client(self) -> httpx.AsyncClient:
        """Get httpx async client (lazy initialization)."""
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(timeout=self.policy.request_timeout)
            self._owns_client = True
        return self._client

    async def close(self) -> None:
        """Close the HTTP client if this executor created it."""
        if self._owns_client and self._client is not None and not self._client.is_closed:
            await self._client.aclose()
            self._client = None

    def cancel_active_requests(self) -> int:
        """Cancel every in-flight logical request."""
        return self.registry.cancel_all()

    async def execute(
        self,
        request: PreparedRequest,
        decode: Decoder[T],
        parse_error: ErrorParser,
    ) -> T:
        """Run one logical request.

        Args:
            request: The built request.
            decode: Converts a 2xx response into the result; raises
                ProviderError subclasses on malformed bodies.
            parse_error: Converts a >=400 response into a ProviderError.

        Returns:
            The decoded result.

        Raises:
            ServiceUnavailableError: If the circuit is open before an attempt.
            RequestTimeoutError: If the final attempt timed out.
            RequestCancelledError: If cancel_active_requests() aborted the call.
            ProviderError: For any other terminal failure.
        """
        start_time = time.perf_counter()
        try:
            return await self.registry.run(
                self._execute_with_retry(request, decode, parse_error),
                self.provider,
            )
        finally:
            elapsed = time.perf_counter() - start_time
            if elapsed > SLOW_REQUEST_WARNING:
                logger.warning(f"Slow {request.label} request to {self.provider.value}: {elapsed:.1f}s")
            elif elapsed > SLOW_REQUEST_INFO:
                logger.info(f"{request.label} request to {self.provider.value} took {elapsed:.1f}s")

    def ensure_available(self, label: str) -> None:
        """Raise ServiceUnavailableError if the circuit refuses new attempts."""
        if not self.breaker.can_make_request():
            logger.warning(f"Circuit open for {self.provider.value}, skipping {label} request")
            error = ServiceUnavailableError(self.provider)
            self._publish_failure(error)
            raise error

    async def _execute_with_retry(
        self,
        request: PreparedRequest,
        decode: Decoder[T],
        parse_error: ErrorParser,
    ) -> T:
        retry_count = 0
        while True:
            self.ensure_available(request.label)

            attempt_start = time.perf_counter()
            try:
                response = await self._send(request, attempt=retry_count + 1)
                if response.status_code >= 400:
                    raise parse_error(response)
            except ProviderError as error:
                if error.retryable and retry_count < self.policy.max_retries:
                    delay = self.policy.backoff(retry_count)
                    logger.warning(
                        f"{request.label} attempt {retry_count + 1} to {self.provider.value} "
                        f"failed: {error}. Retrying in {delay:.1f}s"
                    )
                    self.events.publish(
                        EventKind.RETRY_SCHEDULED,
                        self.provider,
                        attempt=retry_count + 1,
                        delay=delay,
                        error=error.kind.value,
                    )
                    await self._sleep(delay)
                    retry_count += 1
                    continue
                self._record_failure(error)
                raise

            latency_ms = int((time.perf_counter() - attempt_start) * 1000)
            self.events.publish(
                EventKind.RESPONSE_RECEIVED,
                self.provider,
                status_code=response.status_code,
                latency_ms=latency_ms,
            )
            try:
                result = decode(response)
            except ProviderError as error:
                logger.error(f"Undecodable 2xx response from {self.provider.value}: {error}")
                self._record_failure(error)
                raise
            self.breaker.record_success()
            return result

    async def _send(self, request: PreparedRequest, attempt: int) -> httpx.Response:
        """One physical attempt under the per-attempt timeout and watchdog."""
        watchdog = max(self.policy.watchdog_timeout, request.timeout)
        logger.info(
            f"{self.provider.value} {request.label} attempt {attempt}: "
            f"{request.method} {request.url} ({request.size} bytes, timeout {request.timeout:.0f}s)"
        )
        self.events.publish(
            EventKind.REQUEST_SENT,
            self.provider,
            attempt=attempt,
            label=request.label,
            size=request.size,
        )
        try:
            async with asyncio.timeout(watchdog):
                return await self.client.request(
                    request.method,
                    request.url,
                    params=request.params or None,
                    headers=request.headers,
                    content=request.content,
                    timeout=request.timeout,
                )
        except TimeoutError as e:
            logger.warning(f"Watchdog fired after {watchdog:.0f}s on {self.provider.value}")
            raise RequestTimeoutError(self.provider, watchdog, watchdog=True) from e
        except httpx.TimeoutException as e:
            raise RequestTimeoutError(self.provider, request.timeout) from e
        except httpx.ConnectError as e:
            raise NetworkError(self.provider, f"Connection failed: {e}", retryable=False) from e
        except (httpx.NetworkError, httpx.RemoteProtocolError) as e:
            raise NetworkError(self.provider, f"Connection lost: {e}", retryable=True) from e
        except (httpx.InvalidURL, httpx.UnsupportedProtocol) as e:
            raise InvalidURLError(self.provider, request.url) from e
        except httpx.HTTPError as e:
            raise NetworkError(self.provider, f"Transport error: {e}", retryable=False) from e

    def _record_failure(self, error: ProviderError) -> None:
        previous = self.breaker.state
        state = self.breaker.record_failure()
        if state == CircuitState.OPEN and previous != CircuitState.OPEN:
            self.events.publish(
                EventKind.CIRCUIT_OPENED,
                self.provider,
                failure_count=self.breaker.failure_count,
            )
        self._publish_failure(error)

    def _publish_failure(self, error: ProviderError) -> None:
        self.events.publish(
            EventKind.REQUEST_FAILED,
            self.provider,
            error=error.kind.value,
            message=error.message,
            status_code=error.status_code,
        )
