"""fal.ai image provider.

Runs the same image model through fal.ai's synchronous endpoint. fal.ai has
no shared daily quota, only concurrency limits: its 429 means "busy" and is
reported as an APIError rather than a RateLimitError.

The generation response carries image URLs; the first image is downloaded
(or decoded, for ``data:`` URIs) in a follow-up step.

Tests:
    - tests/unit/test_fal_provider.py
"""

from __future__ import annotations

import base64
import binascii
import json
import logging
import time
from typing import Any

import httpx
from pydantic import ValidationError

from hockey_ai.core.events import EventBus
from hockey_ai.core.executor import PreparedRequest, RequestExecutor
from hockey_ai.core.providers.base import (
    APIError,
    AuthenticationError,
    DecodingError,
    GenerationProvider,
    GenerationRequest,
    GenerationResponse,
    InvalidResponseError,
    InvalidURLError,
    MediaItem,
    NetworkError,
    NoDataError,
    OutputModality,
    ProviderConfig,
    ProviderError,
    RequestTimeoutError,
)
from hockey_ai.core.providers.gemini import apply_auth
from hockey_ai.schemas.fal import FalErrorResponse, FalImageRequest, FalImageResponse

logger = logging.getLogger(__name__)

DEFAULT_IMAGE_TIMEOUT = 180.0
BUSY_MESSAGE = "fal.ai is busy, please try again in a few seconds"


def to_data_uri(item: MediaItem) -> str:
    """Encode a media item as a ``data:`` URI."""
    return f"data:{item.mime_type};base64,{base64.b64encode(item.data).decode('ascii')}"


def decode_data_uri(uri: str) -> tuple[bytes, str]:
    """Decode a base64 ``data:`` URI.

    Returns:
        Tuple of (bytes, mime type).

    Raises:
        ValueError: If the URI is not a base64 data URI.
    """
    header, _, payload = uri.partition(",")
    if not header.startswith("data:") or ";base64" not in header or not payload:
        raise ValueError("not a base64 data URI")
    mime_type = header[len("data:"):].split(";")[0] or "application/octet-stream"
    return base64.b64decode(payload, validate=True), mime_type


class FalProvider(GenerationProvider):
    """Image generation through fal.ai.

    Attributes:
        config: Provider configuration (model_name is the fal model path)
        executor: Request executor (owns the circuit breaker)
    """

    def __init__(
        self,
        config: ProviderConfig,
        executor: RequestExecutor | None = None,
        events: EventBus | None = None,
        image_timeout: float = DEFAULT_IMAGE_TIMEOUT,
    ) -> None:
        super().__init__(config)
        self.events = events or (executor.events if executor else EventBus())
        self.executor = executor or RequestExecutor(config.identity, events=self.events)
        self.image_timeout = image_timeout

    def endpoint_url(self) -> str:
        url = f"{self.config.base_url.rstrip('/')}/{self.config.model_name.strip('/')}"
        try:
            parsed = httpx.URL(url)
        except httpx.InvalidURL as e:
            raise InvalidURLError(self.identity, url) from e
        if parsed.scheme not in ("http", "https") or not parsed.host:
            raise InvalidURLError(self.identity, url)
        return url

    async def generate(self, request: GenerationRequest) -> GenerationResponse:
        """Generate an image and download it.

        Args:
            request: Generation request with IMAGE output.

        Returns:
            GenerationResponse with ``image_data`` set.

        Raises:
            ProviderError: If the request is not an image request, or any
                step fails.
        """
        if request.output != OutputModality.IMAGE:
            raise ProviderError("fal.ai provider supports image generation only", self.identity)

        start_time = time.perf_counter()
        headers = {"Content-Type": "application/json"}
        params: dict[str, str] = {}
        apply_auth(self.config.auth_method, self.config.require_api_key(), headers, params)

        body = FalImageRequest(
            prompt=request.prompt,
            aspect_ratio=request.aspect_ratio.value,
            resolution=request.image_size.value,
            image_urls=[to_data_uri(image) for image in request.reference_images],
        )
        prepared = PreparedRequest(
            url=self.endpoint_url(),
            params=params,
            headers=headers,
            content=json.dumps(body.model_dump()).encode("utf-8"),
            timeout=self.image_timeout,
            label="image",
        )
        image_url = await self.executor.execute(prepared, self.decode_image_url, self.parse_error)
        image_data, mime_type = await self.executor.registry.run(
            self.download_image(image_url),
            self.identity,
        )
        return GenerationResponse(
            image_data=image_data,
            image_mime_type=mime_type,
            model=self.config.model_name,
            provider=self.identity,
            latency_ms=int((time.perf_counter() - start_time) * 1000),
        )

    def decode_image_url(self, response: httpx.Response) -> str:
        """Extract the first image URL from ``{"images": [{"url": ...}]}``."""
        if not response.content:
            raise NoDataError(self.identity)
        try:
            parsed = FalImageResponse.model_validate(response.json())
        except ValueError as e:
            raise DecodingError(self.identity, str(e)) from e
        if not parsed.images or not parsed.images[0].url:
            raise InvalidResponseError(self.identity, "No images in response")
        return parsed.images[0].url

    async def download_image(self, url: str) -> tuple[bytes, str]:
        """Fetch generated image bytes.

        Raises:
            DecodingError: Malformed data URI.
            APIError: Non-2xx download response.
            NetworkError | RequestTimeoutError: Transport failure.
        """
        if url.startswith("data:"):
            try:
                return decode_data_uri(url)
            except (binascii.Error, ValueError) as e:
                raise DecodingError(self.identity, f"invalid image data URI: {e}") from e

        logger.info(f"Downloading generated image from {url.split('?')[0]}")
        try:
            response = await self.executor.client.get(url, timeout=self.image_timeout)
        except httpx.TimeoutException as e:
            raise RequestTimeoutError(self.identity, self.image_timeout) from e
        except httpx.HTTPError as e:
            raise NetworkError(self.identity, f"Image download failed: {e}", retryable=False) from e
        if response.status_code >= 400:
            raise APIError(self.identity, "Failed to download image", status_code=response.status_code)
        if not response.content:
            raise NoDataError(self.identity)
        mime_type = response.headers.get("Content-Type", "image/png").split(";")[0]
        return response.content, mime_type

    def parse_error(self, response: httpx.Response) -> ProviderError:
        """Convert an HTTP error response to a provider error.

        429 is a concurrency limit on fal.ai, never a daily quota.
        """
        status = response.status_code
        if status == 429:
            return APIError(self.identity, BUSY_MESSAGE, status_code=status)
        if status in (401, 403):
            return AuthenticationError(self.identity, status_code=status)
        if status >= 500:
            return APIError(self.identity, f"fal.ai server error ({status})", status_code=status)
        try:
            message = FalErrorResponse.model_validate(response.json()).message()
        except (ValueError, ValidationError):
            message = None
        return APIError(self.identity, message or response.text or f"HTTP {status}", status_code=status)

    def cancel_active_requests(self) -> int:
        return self.executor.cancel_active_requests()

    def status(self) -> dict[str, Any]:
        return {
            "provider": self.identity.value,
            "model": self.config.model_name,
            "configured": self.is_configured,
            "circuit": self.executor.breaker.snapshot(),
            "active_requests": self.executor.registry.active_count,
        }

    async def close(self) -> None:
        await self.executor.close()
