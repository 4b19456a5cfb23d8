"""Application services built on the request pipeline."""

from hockey_ai.services.analysis import AnalysisService
from hockey_ai.services.image_generation import ImageGenerationService

__all__ = ["AnalysisService", "ImageGenerationService"]
