"""Analysis API endpoints.

Endpoints:
    POST /api/v1/analysis - Analyze media with a prompt
"""

import logging

from fastapi import APIRouter, Request

from hockey_ai.api.v1.models import AnalysisRequest, AnalysisResponse
from hockey_ai.core.providers.base import InvalidResponseError
from hockey_ai.services.analysis import AnalysisService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/analysis", tags=["analysis"])


def get_analysis_service(request: Request) -> AnalysisService:
    return request.app.state.analysis_service


@router.post("", response_model=AnalysisResponse)
async def analyze(body: AnalysisRequest, request: Request) -> AnalysisResponse:
    """Analyze images/videos with a prompt.

    Small media are inlined; media of 20MB or more are uploaded first.
    Provider errors are mapped to HTTP status codes by the app's
    exception handler.
    """
    service = get_analysis_service(request)
    media = [payload.to_media_item() for payload in body.media]
    result = await service.analyze(media, body.prompt, body.generation_config)
    if result.text is None:
        raise InvalidResponseError(result.provider, "No text in response")
    return AnalysisResponse(
        text=result.text,
        provider=result.provider.value,
        model=result.model,
        fallback_used=result.fallback_used,
        latency_ms=result.latency_ms,
        usage=result.usage,
    )
