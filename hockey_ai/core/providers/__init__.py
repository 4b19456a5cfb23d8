"""Generation providers.

Examples:
    >>> from hockey_ai.core.providers import GenerationRequest, ProviderConfig
    >>> from hockey_ai.core.providers.gemini import GeminiProvider
"""

from hockey_ai.core.providers.base import (
    APIError,
    AspectRatio,
    AuthenticationError,
    AuthMethod,
    DecodingError,
    ErrorKind,
    GenerationProvider,
    GenerationRequest,
    GenerationResponse,
    ImageSize,
    InvalidResponseError,
    InvalidURLError,
    MediaItem,
    MediaRole,
    MissingAPIKeyError,
    NetworkError,
    NoDataError,
    OutputModality,
    ProviderConfig,
    ProviderError,
    ProviderType,
    RateLimitError,
    RequestCancelledError,
    RequestTimeoutError,
    ServiceUnavailableError,
    UploadFailedError,
    is_rate_limit_error,
    is_rate_limit_message,
)

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
