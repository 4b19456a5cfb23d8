"""Typed wire schemas for provider requests and responses."""

from hockey_ai.schemas.fal import FalErrorResponse, FalImage, FalImageRequest, FalImageResponse
from hockey_ai.schemas.gemini import (
    Candidate,
    Content,
    ErrorDetail,
    ErrorResponse,
    FileData,
    GenerateContentRequest,
    GenerateContentResponse,
    InlineData,
    Part,
    UploadedFile,
    UploadMetadata,
    UploadResponse,
    UsageMetadata,
    VideoMetadata,
)

__all__ = [
    "Candidate",
    "Content",
    "ErrorDetail",
    "ErrorResponse",
    "FalErrorResponse",
    "FalImage",
    "FalImageRequest",
    "FalImageResponse",
    "FileData",
    "GenerateContentRequest",
    "GenerateContentResponse",
    "InlineData",
    "Part",
    "UploadMetadata",
    "UploadResponse",
    "UploadedFile",
    "UsageMetadata",
    "VideoMetadata",
]
