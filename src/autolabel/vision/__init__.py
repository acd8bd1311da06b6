"""
Vision Module

Code extraction from photographs with a vision model.
"""

from .base_extractor import BaseExtractor, ExtractionError
from .vision_backend import OllamaVisionExtractor, VisionModelNotFoundError

__all__ = ["BaseExtractor", "ExtractionError", "OllamaVisionExtractor", "VisionModelNotFoundError"]
