"""FastAPI application for the hockey AI pipeline.

This module provides the FastAPI application with health endpoints,
API routes, provider error mapping and lifecycle management.

Run with:
    uvicorn hockey_ai.main:app --reload

Examples:
    >>> # Health check
    >>> curl http://localhost:8000/health

    >>> # API docs
    >>> # Open http://localhost:8000/docs

Tests:
    - tests/integration/test_api.py
"""

import logging
from contextlib import asynccontextmanager
from typing import Any

from fastapi import FastAPI, HTTPException, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from hockey_ai import __version__
from hockey_ai.api.v1 import router as v1_router
from hockey_ai.config import ProviderType, get_settings
from hockey_ai.core.circuit_breaker import CircuitState
from hockey_ai.core.events import EventBus
from hockey_ai.core.providers.base import (
    ErrorKind,
    ProviderError,
)
from hockey_ai.services.analysis import AnalysisService
from hockey_ai.services.factory import build_rate_limit_store
from hockey_ai.services.image_generation import ImageGenerationService

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)

ERROR_STATUS: dict[ErrorKind, int] = {
    ErrorKind.SERVICE_UNAVAILABLE: status.HTTP_503_SERVICE_UNAVAILABLE,
    ErrorKind.MISSING_API_KEY: status.HTTP_503_SERVICE_UNAVAILABLE,
    ErrorKind.RATE_LIMIT_EXCEEDED: status.HTTP_429_TOO_MANY_REQUESTS,
    ErrorKind.TIMEOUT: status.HTTP_504_GATEWAY_TIMEOUT,
    ErrorKind.CANCELLED: 499,
    ErrorKind.UPLOAD_FAILED: status.HTTP_502_BAD_GATEWAY,
}


class HealthResponse(BaseModel):
    """Health check response."""

    status: str
    version: str
    providers: dict[str, bool]
    analysis: dict[str, Any]
    images: dict[str, Any]


def _has_open_circuit(report: dict[str, Any]) -> bool:
    return any(p["circuit"]["state"] == CircuitState.OPEN.value for p in report.values())


def create_app(
    analysis_service: AnalysisService | None = None,
    image_service: ImageGenerationService | None = None,
    events: EventBus | None = None,
) -> FastAPI:
    """Create the FastAPI application.

    Services not passed in are built from settings at startup.

    Args:
        analysis_service: Prebuilt analysis service.
        image_service: Prebuilt image generation service.
        events: Event bus shared with the services.

    Returns:
        Configured FastAPI app.
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Build services on startup, close them on shutdown."""
        logger.info(f"Starting hockey AI pipeline v{__version__}")
        store = None
        if app.state.analysis_service is None or app.state.image_service is None:
            settings = get_settings()
            logging.getLogger().setLevel(settings.LOG_LEVEL)
            store = build_rate_limit_store(settings)
            await store.init()
            if app.state.analysis_service is None:
                app.state.analysis_service = AnalysisService.from_settings(
                    settings, store=store, events=app.state.events
                )
            if app.state.image_service is None:
                app.state.image_service = ImageGenerationService.from_settings(
                    settings, store=store, events=app.state.events
                )

        yield

        logger.info("Shutting down hockey AI pipeline")
        app.state.analysis_service.cancel_active_requests()
        app.state.image_service.cancel_active_requests()
        await app.state.analysis_service.close()
        await app.state.image_service.close()
        if store is not None:
            await store.close()

    app = FastAPI(
        title="Hockey AI Pipeline",
        description="Resilient multi-provider AI analysis and card image generation",
        version=__version__,
        lifespan=lifespan,
    )
    app.state.events = events or (analysis_service.events if analysis_service else EventBus())
    app.state.analysis_service = analysis_service
    app.state.image_service = image_service

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(v1_router)

    @app.exception_handler(ProviderError)
    async def provider_exception_handler(request: Request, exc: ProviderError):
        """Map pipeline errors to HTTP responses."""
        status_code = ERROR_STATUS.get(exc.kind, status.HTTP_502_BAD_GATEWAY)
        logger.warning(f"Provider error on {request.url.path}: {exc}")
        return JSONResponse(
            status_code=status_code,
            content={
                "error": exc.kind.value,
                "detail": exc.user_message,
                "message": str(exc),
            },
        )

    @app.exception_handler(HTTPException)
    async def http_exception_handler(request: Request, exc: HTTPException):
        """Handle HTTP exceptions with consistent response format."""
        return JSONResponse(
            status_code=exc.status_code,
            content={"error": exc.detail, "detail": None},
        )

    @app.get("/health", response_model=HealthResponse, tags=["Health"])
    async def health_check(request: Request) -> HealthResponse:
        """Report provider configuration, circuit and rate-limit state."""
        analysis = await request.app.state.analysis_service.status()
        images = await request.app.state.image_service.status()
        configured = {
            p.value: any(report.get(p.value, {}).get("configured", False) for report in (analysis, images))
            for p in ProviderType
        }
        degraded = _has_open_circuit(analysis) or _has_open_circuit(images)
        return HealthResponse(
            status="degraded" if degraded else "healthy",
            version=__version__,
            providers=configured,
            analysis=analysis,
            images=images,
        )

    @app.get("/", tags=["Root"])
    async def root() -> dict[str, str]:
        """Root endpoint with basic info."""
        return {
            "name": "Hockey AI Pipeline",
            "version": __version__,
            "docs": "/docs",
            "health": "/health",
        }

    return app


app = create_app()


# Entry point for development
if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "hockey_ai.main:app",
        host="0.0.0.0",
        port=8000,
        reload=True,
    )
