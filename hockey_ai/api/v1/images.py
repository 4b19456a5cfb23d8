"""Image generation API endpoints.

Endpoints:
    POST /api/v1/images - Generate a card image
"""

import base64
import logging

from fastapi import APIRouter, Request

from hockey_ai.api.v1.models import ImageRequest, ImageResponse
from hockey_ai.core.providers.base import InvalidResponseError
from hockey_ai.services.image_generation import ImageGenerationService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/images", tags=["images"])


def get_image_service(request: Request) -> ImageGenerationService:
    return request.app.state.image_service


@router.post("", response_model=ImageResponse)
async def generate_image(body: ImageRequest, request: Request) -> ImageResponse:
    """Generate an image, falling back to fal.ai once Gemini is rate limited."""
    service = get_image_service(request)
    result = await service.generate_image(
        body.prompt,
        aspect_ratio=body.aspect_ratio,
        image_size=body.image_size,
        reference_images=[payload.to_media_item() for payload in body.reference_images],
    )
    if not result.image_data:
        raise InvalidResponseError(result.provider, "No image data in response")
    return ImageResponse(
        image_base64=base64.b64encode(result.image_data).decode("ascii"),
        mime_type=result.image_mime_type,
        provider=result.provider.value,
        model=result.model,
        fallback_used=result.fallback_used,
        latency_ms=result.latency_ms,
    )
