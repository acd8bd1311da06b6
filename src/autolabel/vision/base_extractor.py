"""
Base Extractor Interface

Abstract base class defining the code extraction contract.
"""

from abc import ABC, abstractmethod
from pathlib import Path

from ..models import ExtractionResult


class ExtractionError(Exception):
    """Raised when the extraction capability fails for one image."""
    pass


class BaseExtractor(ABC):
    """
    Reads the handwritten sample code and describes the object in a photo.

    Implementations must be safe to call from several threads at once and
    idempotent for the same image.
    """

    @abstractmethod
    def extract(self, image_path: Path) -> ExtractionResult:
        """
        Analyze one photograph.

        Args:
            image_path: Path to the image file

        Returns:
            ExtractionResult; code is None when no code is visible

        Raises:
            ExtractionError: On any transport, model or parsing failure
        """
        pass

    def close(self) -> None:
        """Release held resources."""
        pass
