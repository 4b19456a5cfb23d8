"""Base generation provider abstraction layer.

This module defines the abstract base class, request/response types and the
error taxonomy shared by all providers (Gemini, Gemini-compatible secondary,
fal.ai).

Examples:
    >>> from hockey_ai.core.providers import ProviderConfig, ProviderType
    >>> config = ProviderConfig(
    ...     identity=ProviderType.GEMINI,
    ...     base_url="https://generativelanguage.googleapis.com/v1beta",
    ...     api_key="...",
    ...     model_name="gemini-2.5-flash",
    ... )

Tests:
    - tests/unit/test_providers.py::TestProviderConfig
    - tests/unit/test_providers.py::TestProviderErrors
    - tests/unit/test_providers.py::TestGenerationRequest
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator

# Re-export from config for convenience
from hockey_ai.config import GB, MB, AuthMethod, ProviderType

__all__ = [
    "APIError",
    "AspectRatio",
    "AuthenticationError",
    "AuthMethod",
    "DecodingError",
    "ErrorKind",
    "GenerationProvider",
    "GenerationRequest",
    "GenerationResponse",
    "ImageSize",
    "InvalidResponseError",
    "InvalidURLError",
    "MediaItem",
    "MediaRole",
    "MissingAPIKeyError",
    "NetworkError",
    "NoDataError",
    "OutputModality",
    "ProviderConfig",
    "ProviderError",
    "ProviderType",
    "RateLimitError",
    "RequestCancelledError",
    "RequestTimeoutError",
    "ServiceUnavailableError",
    "UploadFailedError",
    "is_rate_limit_error",
    "is_rate_limit_message",
]

MAX_REFERENCE_IMAGES = 14

# Substrings that identify a quota/rate-limit condition in an error message
RATE_LIMIT_TOKENS = ("rate limit", "quota", "429", "resource_exhausted")


class MediaRole(str, Enum):
    """Kind of media attached to a request."""

    IMAGE = "image"
    AUDIO = "audio"
    VIDEO = "video"


class OutputModality(str, Enum):
    """What the provider is asked to produce."""

    TEXT = "text"
    IMAGE = "image"


class AspectRatio(str, Enum):
    """Supported image aspect ratios."""

    ONE_BY_ONE = "1:1"
    THREE_BY_FOUR = "3:4"
    FOUR_BY_THREE = "4:3"
    NINE_BY_SIXTEEN = "9:16"
    SIXTEEN_BY_NINE = "16:9"


class ImageSize(str, Enum):
    """Supported image resolutions."""

    ONE_K = "1K"
    TWO_K = "2K"
    FOUR_K = "4K"


class ProviderConfig(BaseModel):
    """Immutable per-provider configuration.

    Attributes:
        identity: Provider identity (also the rate-limit storage key)
        base_url: Generation endpoint base URL
        auth_method: How the API key is attached
        api_key: API key (None when not configured)
        model_name: Model ID for generation
        upload_url: Multipart upload endpoint, if the provider supports uploads
        inline_size_limit: Items at or above this size are uploaded
        upload_size_limit: Items at or above this size are rejected
    """

    model_config = ConfigDict(frozen=True)

    identity: ProviderType
    base_url: str
    auth_method: AuthMethod = AuthMethod.QUERY
    api_key: str | None = Field(default=None, repr=False)
    model_name: str
    upload_url: str | None = None
    inline_size_limit: int = Field(default=20 * MB, gt=0)
    upload_size_limit: int = Field(default=2 * GB, gt=0)

    @property
    def is_configured(self) -> bool:
        """Check if an API key is available."""
        return bool(self.api_key)

    def require_api_key(self) -> str:
        """Get the API key.

        Raises:
            MissingAPIKeyError: If no key is configured.
        """
        if not self.api_key:
            raise MissingAPIKeyError(self.identity)
        return self.api_key


class MediaItem(BaseModel):
    """One media blob attached to a request.

    Attributes:
        data: Raw bytes
        mime_type: MIME type (e.g. "video/mp4")
        role: image, audio or video
        frame_rate: Frame rate hint for video items (capped when sent)
        display_name: Name used for uploads (defaults per item index)
    """

    data: bytes = Field(repr=False)
    mime_type: str
    role: MediaRole
    frame_rate: int | None = Field(default=None, gt=0)
    display_name: str | None = None

    @property
    def size(self) -> int:
        """Payload size in bytes."""
        return len(self.data)


class GenerationRequest(BaseModel):
    """Provider-agnostic generation request.

    Attributes:
        prompt: Text prompt
        media: Media items, sent before the prompt in the given order
        generation_config: Provider generation config (None = provider default)
        output: TEXT for analysis, IMAGE for image generation
        aspect_ratio: Image aspect ratio (IMAGE only)
        image_size: Image resolution (IMAGE only)
        reference_images: Reference images guiding image generation
    """

    prompt: str = Field(min_length=1)
    media: list[MediaItem] = Field(default_factory=list)
    generation_config: dict[str, Any] | None = None
    output: OutputModality = OutputModality.TEXT
    aspect_ratio: AspectRatio = AspectRatio.THREE_BY_FOUR
    image_size: ImageSize = ImageSize.TWO_K
    reference_images: list[MediaItem] = Field(default_factory=list)

    @field_validator("reference_images")
    @classmethod
    def validate_reference_images(cls, v: list[MediaItem]) -> list[MediaItem]:
        """Limit reference image count and kind."""
        if len(v) > MAX_REFERENCE_IMAGES:
            raise ValueError(f"At most {MAX_REFERENCE_IMAGES} reference images are supported")
        if any(item.role != MediaRole.IMAGE for item in v):
            raise ValueError("Reference images must have role 'image'")
        return v

    @property
    def has_video(self) -> bool:
        """Check if any media item is a video."""
        return any(item.role == MediaRole.VIDEO for item in self.media)


class GenerationResponse(BaseModel):
    """Standardized generation response wrapper.

    Attributes:
        text: Generated text (TEXT output)
        image_data: Generated image bytes (IMAGE output)
        image_mime_type: MIME type of the generated image
        model: Model ID used
        provider: Provider that produced the response
        usage: Token usage statistics
        latency_ms: Latency of the logical call including retries
        fallback_used: True when a secondary provider produced the result
    """

    text: str | None = None
    image_data: bytes | None = Field(default=None, repr=False)
    image_mime_type: str | None = None
    model: str
    provider: ProviderType
    usage: dict[str, int] = Field(default_factory=dict)
    latency_ms: int = Field(default=0, ge=0)
    fallback_used: bool = False


class GenerationProvider(ABC):
    """Abstract base class for generation providers.

    A provider owns its executor (and therefore its circuit breaker), so
    breaker state is per provider.

    Attributes:
        config: Immutable provider configuration
    """

    def __init__(self, config: ProviderConfig) -> None:
        self.config = config

    @property
    def identity(self) -> ProviderType:
        """Provider identity."""
        return self.config.identity

    @property
    def is_configured(self) -> bool:
        """Check if the provider has an API key."""
        return self.config.is_configured

    @abstractmethod
    async def generate(self, request: GenerationRequest) -> GenerationResponse:
        """Run one logical generation call.

        Args:
            request: The generation request.

        Returns:
            GenerationResponse with text or image bytes.

        Raises:
            ProviderError: If the call fails.
        """

    @abstractmethod
    def cancel_active_requests(self) -> int:
        """Cancel every in-flight request of this provider.

        Returns:
            Number of tasks cancelled.
        """

    @abstractmethod
    def status(self) -> dict[str, Any]:
        """Snapshot of provider health (breaker state, in-flight requests)."""

    @abstractmethod
    async def close(self) -> None:
        """Release network resources."""


class ErrorKind(str, Enum):
    """Error classification surfaced to callers."""

    INVALID_URL = "invalid_url"
    INVALID_RESPONSE = "invalid_response"
    NO_DATA = "no_data"
    DECODING_ERROR = "decoding_error"
    API_ERROR = "api_error"
    MISSING_API_KEY = "missing_api_key"
    RATE_LIMIT_EXCEEDED = "rate_limit_exceeded"
    UPLOAD_FAILED = "upload_failed"
    TIMEOUT = "timeout"
    NETWORK_ERROR = "network_error"
    CANCELLED = "cancelled"
    SERVICE_UNAVAILABLE = "service_unavailable"


class ProviderError(Exception):
    """Base exception for provider errors.

    Attributes:
        provider: The provider that raised the error
        message: Error message
        status_code: HTTP status code (if applicable)
        retryable: Whether the executor may retry the attempt
        kind: Error classification
        user_message: Text suitable for display to an end user
    """

    kind: ErrorKind = ErrorKind.API_ERROR
    user_message: str = "Something went wrong. Please try again."

    def __init__(
        self,
        message: str,
        provider: ProviderType,
        status_code: int | None = None,
        retryable: bool = False,
    ) -> None:
        super().__init__(message)
        self.provider = provider
        self.status_code = status_code
        self.retryable = retryable

    @property
    def message(self) -> str:
        return self.args[0]

    def __str__(self) -> str:
        """String representation of the error."""
        parts = [f"[{self.provider.value}]", self.args[0]]
        if self.status_code:
            parts.insert(1, f"({self.status_code})")
        return " ".join(parts)


class InvalidURLError(ProviderError):
    """The configured base URL and model do not form a valid URL."""

    kind = ErrorKind.INVALID_URL

    def __init__(self, provider: ProviderType, url: str) -> None:
        super().__init__(f"Invalid request URL: {url}", provider)
        self.url = url


class InvalidResponseError(ProviderError):
    """Response decoded but lacks the expected content."""

    kind = ErrorKind.INVALID_RESPONSE

    def __init__(
        self, provider: ProviderType, message: str = "Invalid response from server"
    ) -> None:
        super().__init__(message, provider)


class NoDataError(ProviderError):
    """Response body was empty."""

    kind = ErrorKind.NO_DATA

    def __init__(self, provider: ProviderType) -> None:
        super().__init__("No data received", provider)


class DecodingError(ProviderError):
    """Response body could not be decoded."""

    kind = ErrorKind.DECODING_ERROR

    def __init__(self, provider: ProviderType, detail: str) -> None:
        super().__init__(f"Failed to decode response: {detail}", provider)


class APIError(ProviderError):
    """Provider reported an error (HTTP status or error body).

    5xx errors are retryable; everything else is not.
    """

    kind = ErrorKind.API_ERROR

    def __init__(
        self,
        provider: ProviderType,
        message: str,
        status_code: int | None = None,
    ) -> None:
        super().__init__(
            message,
            provider,
            status_code=status_code,
            retryable=status_code is not None and status_code >= 500,
        )


class AuthenticationError(APIError):
    """Authentication failed error."""

    user_message = "The AI service rejected its credentials."

    def __init__(self, provider: ProviderType, status_code: int = 401) -> None:
        super().__init__(
            provider, "Authentication failed - check API key", status_code=status_code
        )


class MissingAPIKeyError(ProviderError):
    """No API key configured for the provider."""

    kind = ErrorKind.MISSING_API_KEY
    user_message = "The AI service is not configured."

    def __init__(self, provider: ProviderType) -> None:
        super().__init__("API key not configured", provider)


class RateLimitError(ProviderError):
    """Provider quota or rate limit exhausted.

    Not retried by the executor: the router turns it into a fallback hop
    and records the hit in the rate-limit tracker.
    """

    kind = ErrorKind.RATE_LIMIT_EXCEEDED
    user_message = "Daily AI limit reached. Please try again tomorrow."

    def __init__(
        self,
        provider: ProviderType,
        message: str | None = None,
        retry_after: int | None = None,
    ) -> None:
        text = message or "Rate limit exceeded"
        if retry_after:
            text += f", retry after {retry_after}s"
        super().__init__(text, provider, status_code=429, retryable=False)
        self.retry_after = retry_after


class UploadFailedError(ProviderError):
    """Uploading a large media item failed."""

    kind = ErrorKind.UPLOAD_FAILED
    user_message = "Uploading your video failed. Please try again."

    def __init__(
        self,
        provider: ProviderType,
        reason: str,
        item_index: int | None = None,
        status_code: int | None = None,
    ) -> None:
        prefix = f"Upload of item {item_index} failed" if item_index is not None else "Upload failed"
        super().__init__(f"{prefix}: {reason}", provider, status_code=status_code)
        self.reason = reason
        self.item_index = item_index


class RequestTimeoutError(ProviderError):
    """Attempt exceeded its timeout or the watchdog ceiling."""

    kind = ErrorKind.TIMEOUT
    user_message = "The AI service took too long to respond. Please try again."

    def __init__(self, provider: ProviderType, timeout: float, watchdog: bool = False) -> None:
        source = "watchdog" if watchdog else "request"
        super().__init__(f"Request timed out after {timeout:.0f}s ({source})", provider, retryable=True)
        self.timeout = timeout
        self.watchdog = watchdog


class NetworkError(ProviderError):
    """Transport failure (connection lost, refused, protocol error)."""

    kind = ErrorKind.NETWORK_ERROR
    user_message = "Network connection lost. Check your connection and try again."

    def __init__(self, provider: ProviderType, message: str, retryable: bool) -> None:
        super().__init__(message, provider, retryable=retryable)


class RequestCancelledError(ProviderError):
    """Request was cancelled by cancel_active_requests()."""

    kind = ErrorKind.CANCELLED
    user_message = "Request cancelled."

    def __init__(self, provider: ProviderType) -> None:
        super().__init__("Request cancelled", provider)


class ServiceUnavailableError(ProviderError):
    """Circuit breaker is open; no network call was made."""

    kind = ErrorKind.SERVICE_UNAVAILABLE
    user_message = "AI service temporarily unavailable. Try again shortly."

    def __init__(self, provider: ProviderType) -> None:
        super().__init__("Service temporarily unavailable (circuit open)", provider, status_code=503)


def is_rate_limit_message(message: str) -> bool:
    """Check an error message for quota/rate-limit tokens."""
    lowered = message.lower()
    return any(token in lowered for token in RATE_LIMIT_TOKENS)


def is_rate_limit_error(error: BaseException) -> bool:
    """Classify an error as a rate-limit condition.

    Args:
        error: Any exception raised by a provider.

    Returns:
        True for RateLimitError, or an APIError whose message carries
        quota/rate-limit tokens. A bare 429 status is not enough: fal.ai uses
        429 for concurrency limits, which the error parser maps to APIError.
    """
    if isinstance(error, RateLimitError):
        return True
    if isinstance(error, APIError):
        return is_rate_limit_message(error.message)
    return False
