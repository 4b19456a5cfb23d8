"""API v1 module.

Contains all v1 API routes.
"""

from fastapi import APIRouter

from hockey_ai.api.v1.analysis import router as analysis_router
from hockey_ai.api.v1.images import router as images_router
from hockey_ai.api.v1.requests import router as requests_router

router = APIRouter(prefix="/api/v1")
router.include_router(analysis_router)
router.include_router(images_router)
router.include_router(requests_router)

__all__ = ["router"]
