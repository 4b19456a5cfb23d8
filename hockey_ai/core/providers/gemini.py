"""Generative Language API provider (Gemini and Gemini-compatible endpoints).

Talks to ``{base_url}/models/{model}:generateContent`` over raw REST with
httpx. Large media are uploaded first through the multipart/related upload
endpoint and referenced by file URI.

Examples:
    >>> from hockey_ai.core.providers.gemini import GeminiProvider
    >>> provider = GeminiProvider(config)
    >>> response = await provider.generate(
    ...     GenerationRequest(prompt="Rate this shot", media=[clip])
    ... )
    >>> print(response.text)

Tests:
    - tests/unit/test_gemini_provider.py
"""

from __future__ import annotations

import base64
import binascii
import json
import logging
import time
import uuid
from typing import Any

import httpx
from pydantic import ValidationError

from hockey_ai.core.events import EventBus
from hockey_ai.core.executor import PreparedRequest, RequestExecutor
from hockey_ai.core.media import MediaPartAssembler, encode_inline
from hockey_ai.core.providers.base import (
    APIError,
    AuthenticationError,
    AuthMethod,
    DecodingError,
    GenerationProvider,
    GenerationRequest,
    GenerationResponse,
    InvalidResponseError,
    InvalidURLError,
    MediaItem,
    NoDataError,
    OutputModality,
    ProviderConfig,
    ProviderError,
    RateLimitError,
    UploadFailedError,
    is_rate_limit_message,
)
from hockey_ai.schemas.gemini import (
    Content,
    ErrorResponse,
    GenerateContentRequest,
    GenerateContentResponse,
    Part,
    UploadMetadata,
    UploadResponse,
)

logger = logging.getLogger(__name__)

DEFAULT_GENERATION_CONFIG: dict[str, Any] = {
    "temperature": 0.1,
    "topK": 10,
    "topP": 0.8,
    "maxOutputTokens": 8192,
}
MULTIMODAL_GENERATION_CONFIG: dict[str, Any] = {"responseMimeType": "application/json"}

DEFAULT_UPLOAD_TIMEOUT = 300.0
DEFAULT_IMAGE_TIMEOUT = 180.0


def apply_auth(
    auth_method: AuthMethod,
    api_key: str,
    headers: dict[str, str],
    params: dict[str, str],
) -> None:
    """Attach the API key to headers or query parameters in place."""
    if auth_method == AuthMethod.QUERY:
        params["key"] = api_key
    elif auth_method == AuthMethod.HEADER:
        headers["x-goog-api-key"] = api_key
    elif auth_method == AuthMethod.BEARER:
        headers["Authorization"] = f"Bearer {api_key}"
    elif auth_method == AuthMethod.KEY:
        headers["Authorization"] = f"Key {api_key}"


def _validated_url(config: ProviderConfig, url: str) -> str:
    try:
        parsed = httpx.URL(url)
    except httpx.InvalidURL as e:
        raise InvalidURLError(config.identity, url) from e
    if parsed.scheme not in ("http", "https") or not parsed.host:
        raise InvalidURLError(config.identity, url)
    return url


class GeminiProvider(GenerationProvider):
    """Generation provider for the Generative Language REST API.

    Used both for the primary Gemini provider and for any Gemini-compatible
    secondary endpoint; the difference is only in ProviderConfig.

    Attributes:
        config: Provider configuration
        executor: Request executor (owns the circuit breaker)
        assembler: Media part assembler using this provider for uploads
    """

    def __init__(
        self,
        config: ProviderConfig,
        executor: RequestExecutor | None = None,
        events: EventBus | None = None,
        upload_timeout: float = DEFAULT_UPLOAD_TIMEOUT,
        image_timeout: float = DEFAULT_IMAGE_TIMEOUT,
    ) -> None:
        """Initialize provider.

        Args:
            config: Provider configuration.
            executor: Executor to send requests through (built if omitted).
            events: Event sink shared with the executor.
            upload_timeout: Timeout for each media upload.
            image_timeout: Per-attempt timeout for image generation.
        """
        super().__init__(config)
        self.events = events or (executor.events if executor else EventBus())
        self.executor = executor or RequestExecutor(config.identity, events=self.events)
        self.upload_timeout = upload_timeout
        self.image_timeout = image_timeout
        self.assembler = MediaPartAssembler(
            config.identity,
            uploader=self if config.upload_url else None,
            inline_size_limit=config.inline_size_limit,
            upload_size_limit=config.upload_size_limit,
            events=self.events,
        )

    def generation_url(self) -> str:
        """Build ``{base_url}/models/{model}:generateContent``.

        Raises:
            InvalidURLError: If base URL or model are unusable.
        """
        base = self.config.base_url.rstrip("/")
        model = self.config.model_name.strip()
        url = f"{base}/models/{model}:generateContent"
        if not base or not model:
            raise InvalidURLError(self.identity, url)
        return _validated_url(self.config, url)

    def _auth(self) -> tuple[dict[str, str], dict[str, str]]:
        headers = {"Content-Type": "application/json"}
        params: dict[str, str] = {}
        apply_auth(self.config.auth_method, self.config.require_api_key(), headers, params)
        return headers, params

    async def generate(self, request: GenerationRequest) -> GenerationResponse:
        """Run one logical generation call.

        Media are assembled (inlined or uploaded) before the generation
        request is sent. Image output sends the prompt followed by any
        reference images and asks for IMAGE modality.

        Args:
            request: The generation request.

        Returns:
            GenerationResponse with ``text`` or ``image_data`` set.

        Raises:
            MissingAPIKeyError: If no key is configured.
            ProviderError: If assembly or the request fails.
        """
        start_time = time.perf_counter()
        headers, params = self._auth()
        url = self.generation_url()

        if request.output == OutputModality.IMAGE:
            body = self._image_body(request)
            timeout = self.image_timeout
            decode = self.decode_image
        else:
            if any(self.assembler.needs_upload(item) for item in request.media):
                self.executor.ensure_available("upload")
            parts = await self.executor.registry.run(
                self.assembler.assemble(request.media, request.prompt),
                self.identity,
            )
            generation_config = request.generation_config
            if generation_config is None:
                generation_config = (
                    MULTIMODAL_GENERATION_CONFIG if request.media else DEFAULT_GENERATION_CONFIG
                )
            body = GenerateContentRequest(
                contents=[Content(role="user", parts=parts)],
                generation_config=generation_config,
            )
            timeout = None
            decode = self.decode_text

        content = json.dumps(body.to_wire()).encode("utf-8")
        if timeout is None:
            timeout = self.executor.policy.timeout_for(len(content), request.has_video)

        prepared = PreparedRequest(
            url=url,
            params=params,
            headers=headers,
            content=content,
            timeout=timeout,
            label=request.output.value,
        )
        response = await self.executor.execute(prepared, decode, self.parse_error)
        latency_ms = int((time.perf_counter() - start_time) * 1000)
        return response.model_copy(update={"latency_ms": latency_ms})

    def _image_body(self, request: GenerationRequest) -> GenerateContentRequest:
        parts = [Part(text=request.prompt)]
        parts.extend(Part(inline_data=encode_inline(image)) for image in request.reference_images)
        generation_config: dict[str, Any] = dict(request.generation_config or {})
        generation_config["responseModalities"] = ["IMAGE"]
        generation_config["imageConfig"] = {
            "aspectRatio": request.aspect_ratio.value,
            "imageSize": request.image_size.value,
        }
        return GenerateContentRequest(
            contents=[Content(role="user", parts=parts)],
            generation_config=generation_config,
        )

    async def upload_file(self, item: MediaItem, display_name: str) -> str:
        """Upload one media item and return its file URI.

        Sends a multipart/related body: JSON metadata part, then raw bytes.

        Args:
            item: The media item.
            display_name: Name shown for the uploaded file.

        Returns:
            The uploaded file's URI.

        Raises:
            UploadFailedError: On any transport, HTTP or decode failure.
        """
        if not self.config.upload_url:
            raise UploadFailedError(self.identity, "no upload endpoint configured")
        url = _validated_url(self.config, self.config.upload_url)
        headers, params = self._auth()

        boundary = uuid.uuid4().hex
        metadata = json.dumps(UploadMetadata.for_display_name(display_name).to_wire())
        body = b"".join(
            [
                f"--{boundary}\r\n".encode(),
                b"Content-Type: application/json; charset=UTF-8\r\n\r\n",
                metadata.encode("utf-8"),
                f"\r\n--{boundary}\r\n".encode(),
                f"Content-Type: {item.mime_type}\r\n\r\n".encode(),
                item.data,
                f"\r\n--{boundary}--\r\n".encode(),
            ]
        )
        headers["Content-Type"] = f"multipart/related; boundary={boundary}"
        headers["X-Goog-Upload-Protocol"] = "multipart"

        logger.info(f"Uploading {display_name} ({item.size} bytes) to {self.identity.value}")
        try:
            response = await self.executor.client.post(
                url,
                params=params or None,
                headers=headers,
                content=body,
                timeout=self.upload_timeout,
            )
        except httpx.HTTPError as e:
            raise UploadFailedError(self.identity, f"{type(e).__name__}: {e}") from e

        if response.status_code >= 400:
            message = self._error_message(response)
            raise UploadFailedError(self.identity, message, status_code=response.status_code)
        try:
            uploaded = UploadResponse.model_validate(response.json())
        except (ValueError, ValidationError) as e:
            raise UploadFailedError(self.identity, f"invalid upload response: {e}") from e
        logger.info(f"Uploaded {display_name} -> {uploaded.file.uri}")
        return uploaded.file.uri

    @staticmethod
    def _error_message(response: httpx.Response) -> str:
        try:
            return ErrorResponse.model_validate(response.json()).error.message or response.text
        except (ValueError, ValidationError):
            return response.text or response.reason_phrase

    def parse_error(self, response: httpx.Response) -> ProviderError:
        """Convert an HTTP error response to a provider error.

        Args:
            response: Response with status >= 400.

        Returns:
            AuthenticationError for 401/403, RateLimitError for 429 or
            quota-token messages on 4xx, otherwise APIError.
        """
        status = response.status_code
        message = self._error_message(response)
        if status in (401, 403):
            return AuthenticationError(self.identity, status_code=status)
        if status == 429 or (status < 500 and is_rate_limit_message(message)):
            retry_after = response.headers.get("Retry-After")
            return RateLimitError(
                self.identity,
                message=message or None,
                retry_after=int(retry_after) if retry_after and retry_after.isdigit() else None,
            )
        return APIError(self.identity, message, status_code=status)

    def _decode_body(self, response: httpx.Response) -> GenerateContentResponse:
        if not response.content:
            raise NoDataError(self.identity)
        try:
            parsed = GenerateContentResponse.model_validate(response.json())
        except ValueError as e:
            # ValidationError is a ValueError
            raise DecodingError(self.identity, str(e)) from e
        if parsed.error is not None:
            message = parsed.error.message or "Unknown API error"
            if is_rate_limit_message(message) or parsed.error.code == 429:
                raise RateLimitError(self.identity, message=message)
            raise APIError(self.identity, message, status_code=parsed.error.code)
        return parsed

    def decode_text(self, response: httpx.Response) -> GenerationResponse:
        """Decode a text generation response.

        Raises:
            NoDataError: Empty body.
            DecodingError: Body is not a valid response document.
            RateLimitError | APIError: Body carries an error object.
            InvalidResponseError: No text in the first candidate.
        """
        parsed = self._decode_body(response)
        text = parsed.first_text()
        if not text:
            raise InvalidResponseError(self.identity, "No text in response candidates")
        return GenerationResponse(
            text=text,
            model=self.config.model_name,
            provider=self.identity,
            usage=parsed.usage_metadata.as_usage() if parsed.usage_metadata else {},
        )

    def decode_image(self, response: httpx.Response) -> GenerationResponse:
        """Decode an image generation response (``inlineData`` part)."""
        parsed = self._decode_body(response)
        inline = parsed.first_inline_data()
        if inline is None:
            raise InvalidResponseError(self.identity, "No image data in response")
        try:
            image_data = base64.b64decode(inline.data, validate=True)
        except (binascii.Error, ValueError) as e:
            raise DecodingError(self.identity, f"invalid base64 image: {e}") from e
        return GenerationResponse(
            image_data=image_data,
            image_mime_type=inline.mime_type,
            model=self.config.model_name,
            provider=self.identity,
            usage=parsed.usage_metadata.as_usage() if parsed.usage_metadata else {},
        )

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
