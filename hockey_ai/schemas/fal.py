"""fal.ai image edit wire schemas.

fal.ai uses snake_case on the wire, so no aliasing is needed.

Tests:
    - tests/unit/test_schemas.py::TestFalSchemas
"""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, Field


class FalImageRequest(BaseModel):
    """Body of ``POST {FAL_BASE_URL}/{model}``.

    Attributes:
        prompt: Image prompt
        num_images: Number of images to generate
        aspect_ratio: e.g. "3:4"
        resolution: "1K", "2K" or "4K"
        output_format: Image encoding
        sync_mode: Wait for the result instead of queueing
        image_urls: Reference images as URLs or data URIs
    """

    prompt: str
    num_images: int = Field(default=1, ge=1, le=4)
    aspect_ratio: str
    resolution: str
    output_format: str = "png"
    sync_mode: bool = True
    image_urls: list[str] = Field(default_factory=list)


class FalImage(BaseModel):
    url: str
    content_type: str | None = None
    width: int | None = None
    height: int | None = None


class FalImageResponse(BaseModel):
    images: list[FalImage] = Field(default_factory=list)
    description: str | None = None


class FalErrorResponse(BaseModel):
    """fal.ai error body; detail is a string or a list of validation errors."""

    detail: Any = None

    def message(self) -> str | None:
        if self.detail is None:
            return None
        if isinstance(self.detail, str):
            return self.detail
        if isinstance(self.detail, list):
            messages = [d.get("msg", str(d)) if isinstance(d, dict) else str(d) for d in self.detail]
            return "; ".join(messages)
        return str(self.detail)
