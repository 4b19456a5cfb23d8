"""Request control and progress endpoints.

Endpoints:
    POST /api/v1/requests/cancel - Cancel every in-flight request
    GET /api/v1/events - Server-Sent Events stream of pipeline events
"""

import logging
from collections.abc import AsyncGenerator
from contextlib import aclosing

from fastapi import APIRouter, Request
from fastapi.responses import StreamingResponse

from hockey_ai.api.v1.models import CancelResponse
from hockey_ai.core.events import EventBus, PipelineEvent

logger = logging.getLogger(__name__)

router = APIRouter(tags=["requests"])


def format_sse(event: PipelineEvent) -> str:
    """Format event as SSE."""
    return f"event: {event.kind.value}\ndata: {event.model_dump_json()}\n\n"


@router.post("/requests/cancel", response_model=CancelResponse)
async def cancel_requests(request: Request) -> CancelResponse:
    """Cancel all in-flight analysis and image requests."""
    cancelled = request.app.state.analysis_service.cancel_active_requests()
    cancelled += request.app.state.image_service.cancel_active_requests()
    logger.info(f"Cancel requested, {cancelled} task(s) cancelled")
    return CancelResponse(cancelled=cancelled)


async def stream_events(request: Request, events: EventBus) -> AsyncGenerator[str, None]:
    async with aclosing(events.stream()) as stream:
        async for event in stream:
            if await request.is_disconnected():
                break
            yield format_sse(event)


@router.get("/events")
async def events_stream(request: Request) -> StreamingResponse:
    """Stream pipeline events (request_sent, uploads_complete, ...) as SSE."""
    return StreamingResponse(
        stream_events(request, request.app.state.events),
        media_type="text/event-stream",
        headers={
            "Cache-Control": "no-cache",
            "Connection": "keep-alive",
            "X-Accel-Buffering": "no",
        },
    )
