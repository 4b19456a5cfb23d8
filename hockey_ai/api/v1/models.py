"""Request and response models for the v1 API."""

from __future__ import annotations

import base64
import binascii
from typing import Any

from pydantic import BaseModel, Field, field_validator

from hockey_ai.core.providers.base import AspectRatio, ImageSize, MediaItem, MediaRole


class MediaPayload(BaseModel):
    """Base64-encoded media item."""

    data_base64: str = Field(..., min_length=1, description="Base64 media bytes")
    mime_type: str = Field(..., examples=["video/mp4", "image/jpeg"])
    role: MediaRole
    frame_rate: int | None = Field(default=None, gt=0)
    display_name: str | None = None

    @field_validator("data_base64")
    @classmethod
    def validate_base64(cls, v: str) -> str:
        try:
            base64.b64decode(v, validate=True)
        except (binascii.Error, ValueError) as e:
            raise ValueError("data_base64 is not valid base64") from e
        return v

    def to_media_item(self) -> MediaItem:
        return MediaItem(
            data=base64.b64decode(self.data_base64),
            mime_type=self.mime_type,
            role=self.role,
            frame_rate=self.frame_rate,
            display_name=self.display_name,
        )


class AnalysisRequest(BaseModel):
    prompt: str = Field(..., min_length=1)
    media: list[MediaPayload] = Field(default_factory=list)
    generation_config: dict[str, Any] | None = None


class AnalysisResponse(BaseModel):
    text: str
    provider: str
    model: str
    fallback_used: bool
    latency_ms: int
    usage: dict[str, int] = Field(default_factory=dict)


class ImageRequest(BaseModel):
    prompt: str = Field(..., min_length=1)
    aspect_ratio: AspectRatio = AspectRatio.THREE_BY_FOUR
    image_size: ImageSize = ImageSize.TWO_K
    reference_images: list[MediaPayload] = Field(default_factory=list, max_length=14)


class ImageResponse(BaseModel):
    image_base64: str
    mime_type: str | None = None
    provider: str
    model: str
    fallback_used: bool
    latency_ms: int


class CancelResponse(BaseModel):
    cancelled: int
