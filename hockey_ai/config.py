"""Application configuration with Pydantic Settings.

This module provides centralized configuration management using pydantic-settings.
Settings are loaded from environment variables and .env files.

Examples:
    >>> from hockey_ai.config import get_settings
    >>> settings = get_settings()
    >>> settings.ANALYSIS_MODEL
    'gemini-2.5-flash'

    >>> settings.has_provider(ProviderType.FAL)
    False

Tests:
    - tests/unit/test_config.py::TestSettings
    - tests/unit/test_config.py::TestProviderType
"""

from enum import Enum
from functools import lru_cache
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from pydantic import Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

MB = 1024 * 1024
GB = 1024 * MB


class ProviderType(str, Enum):
    """Supported generation providers.

    - GEMINI: Google Generative Language API (primary)
    - SECONDARY: Any Gemini-compatible endpoint used as analysis fallback
    - FAL: fal.ai, used as image generation fallback
    """

    GEMINI = "gemini"
    SECONDARY = "secondary"
    FAL = "fal"


class AuthMethod(str, Enum):
    """How the API key is attached to outbound requests."""

    QUERY = "query"  # ?key=...
    HEADER = "header"  # x-goog-api-key
    BEARER = "bearer"  # Authorization: Bearer
    KEY = "key"  # Authorization: Key (fal.ai)


class Settings(BaseSettings):
    """Application settings with provider configuration.

    Settings are loaded from environment variables and .env file.
    At least one provider API key is required.

    Attributes:
        GEMINI_API_KEY: Google AI API key for the primary provider
        SECONDARY_API_KEY: Key for the Gemini-compatible analysis fallback
        FAL_API_KEY: fal.ai key for the image generation fallback
        QUOTA_RESET_TIMEZONE: Timezone in which provider daily quotas reset
        RATE_LIMIT_DATABASE_URL: Durable store for rate-limit hit dates
        MAX_RETRIES: Retries per logical request (physical attempts = retries + 1)
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=True,
        extra="ignore",
    )

    # Primary provider
    GEMINI_API_KEY: str | None = Field(
        default=None,
        description="Google AI API key",
    )
    GEMINI_BASE_URL: str = Field(
        default="https://generativelanguage.googleapis.com/v1beta",
        description="Generation endpoint base URL",
    )
    GEMINI_UPLOAD_URL: str = Field(
        default="https://generativelanguage.googleapis.com/upload/v1beta/files",
        description="Multipart upload endpoint for large media",
    )
    GEMINI_AUTH_METHOD: AuthMethod = Field(
        default=AuthMethod.QUERY,
        description="How the Gemini key is sent",
    )

    # Secondary analysis provider (Gemini-compatible proxy)
    SECONDARY_API_KEY: str | None = Field(
        default=None,
        description="Key for the secondary analysis provider",
    )
    SECONDARY_BASE_URL: str | None = Field(
        default=None,
        description="Base URL of the secondary analysis provider",
    )
    SECONDARY_UPLOAD_URL: str | None = Field(
        default=None,
        description="Upload endpoint of the secondary provider (optional)",
    )
    SECONDARY_AUTH_METHOD: AuthMethod = Field(
        default=AuthMethod.BEARER,
        description="How the secondary key is sent",
    )
    SECONDARY_MODEL: str = Field(
        default="gemini-2.5-flash",
        description="Model used on the secondary provider",
    )

    # Image generation fallback
    FAL_API_KEY: str | None = Field(
        default=None,
        description="fal.ai API key",
    )
    FAL_BASE_URL: str = Field(
        default="https://fal.run",
        description="fal.ai synchronous run endpoint",
    )
    FAL_IMAGE_MODEL: str = Field(
        default="fal-ai/gemini-3-pro-image-preview/edit",
        description="fal.ai model path",
    )

    # Model Selection
    ANALYSIS_MODEL: str = Field(
        default="gemini-2.5-flash",
        description="Model for shot/stick analysis",
    )
    IMAGE_MODEL: str = Field(
        default="gemini-3-pro-image-preview",
        description="Model for card image generation",
    )

    # Rate limit tracking
    QUOTA_RESET_TIMEZONE: str = Field(
        default="America/Los_Angeles",
        description="Timezone in which provider daily quotas reset",
    )
    RATE_LIMIT_DATABASE_URL: str = Field(
        default="sqlite+aiosqlite:///./rate_limits.db",
        description="Database for persisted rate-limit hits",
    )

    # Timeouts (seconds)
    REQUEST_TIMEOUT: float = Field(default=90.0, gt=0)
    LARGE_REQUEST_TIMEOUT: float = Field(default=120.0, gt=0)
    IMAGE_REQUEST_TIMEOUT: float = Field(default=180.0, gt=0)
    WATCHDOG_TIMEOUT: float = Field(default=150.0, gt=0)
    UPLOAD_TIMEOUT: float = Field(default=300.0, gt=0)

    # Retry and circuit breaker
    MAX_RETRIES: int = Field(
        default=1,
        ge=0,
        le=3,
        description="Retries per logical request",
    )
    RETRY_DELAY: float = Field(
        default=1.5,
        ge=0,
        description="Base linear backoff between retries (seconds)",
    )
    CIRCUIT_FAILURE_THRESHOLD: int = Field(default=3, ge=1)
    CIRCUIT_RECOVERY_TIMEOUT: float = Field(default=60.0, gt=0)

    # Payload limits (bytes)
    INLINE_SIZE_LIMIT: int = Field(default=20 * MB, gt=0)
    UPLOAD_SIZE_LIMIT: int = Field(default=2 * GB, gt=0)

    LOG_LEVEL: str = Field(default="INFO")

    @field_validator("QUOTA_RESET_TIMEZONE")
    @classmethod
    def validate_timezone(cls, v: str) -> str:
        """Validate timezone name against the IANA database."""
        try:
            ZoneInfo(v)
        except (ZoneInfoNotFoundError, ValueError) as e:
            raise ValueError(f"Unknown timezone: {v}") from e
        return v

    @field_validator("RATE_LIMIT_DATABASE_URL")
    @classmethod
    def validate_database_url(cls, v: str) -> str:
        """Validate database URL format."""
        valid_prefixes = ("sqlite", "postgresql", "postgres")
        if not any(v.startswith(prefix) for prefix in valid_prefixes):
            raise ValueError(
                f"RATE_LIMIT_DATABASE_URL must start with one of: {valid_prefixes}"
            )
        return v

    @model_validator(mode="after")
    def validate_providers(self) -> "Settings":
        """Ensure at least one provider key is set and limits are coherent."""
        if not (self.GEMINI_API_KEY or self.SECONDARY_API_KEY or self.FAL_API_KEY):
            raise ValueError(
                "At least one provider API key is required "
                "(GEMINI_API_KEY, SECONDARY_API_KEY or FAL_API_KEY)"
            )
        if self.INLINE_SIZE_LIMIT >= self.UPLOAD_SIZE_LIMIT:
            raise ValueError("INLINE_SIZE_LIMIT must be below UPLOAD_SIZE_LIMIT")
        if self.WATCHDOG_TIMEOUT < self.LARGE_REQUEST_TIMEOUT:
            raise ValueError("WATCHDOG_TIMEOUT must be >= LARGE_REQUEST_TIMEOUT")
        return self

    @property
    def quota_timezone(self) -> ZoneInfo:
        """Quota reset timezone as a tzinfo."""
        return ZoneInfo(self.QUOTA_RESET_TIMEZONE)

    def has_provider(self, provider: ProviderType) -> bool:
        """Check if a specific provider is configured.

        Args:
            provider: The provider to check.

        Returns:
            bool: True if the provider's API key (and URL, for SECONDARY) is set.
        """
        if provider == ProviderType.GEMINI:
            return bool(self.GEMINI_API_KEY)
        elif provider == ProviderType.SECONDARY:
            return bool(self.SECONDARY_API_KEY and self.SECONDARY_BASE_URL)
        elif provider == ProviderType.FAL:
            return bool(self.FAL_API_KEY)
        return False

    def get_api_key(self, provider: ProviderType) -> str:
        """Get API key for a specific provider.

        Args:
            provider: The provider to get the key for.

        Returns:
            str: The API key.

        Raises:
            ValueError: If the provider's API key is not configured.
        """
        keys = {
            ProviderType.GEMINI: ("GEMINI_API_KEY", self.GEMINI_API_KEY),
            ProviderType.SECONDARY: ("SECONDARY_API_KEY", self.SECONDARY_API_KEY),
            ProviderType.FAL: ("FAL_API_KEY", self.FAL_API_KEY),
        }
        if provider not in keys:
            raise ValueError(f"Unknown provider: {provider}")
        name, value = keys[provider]
        if not value:
            raise ValueError(f"{name} not configured")
        return value


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance.

    Returns:
        Settings: The application settings.
    """
    return Settings()
