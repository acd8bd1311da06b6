"""
Vision Backend for Code Extraction

Integrates with a vision model via Ollama to read the handwritten sample code
and describe the photographed object.
"""

import base64
import json
import logging
from pathlib import Path
from typing import List, Optional

import httpx
from pydantic import ValidationError

from ..config import settings
from ..models import MAX_COLORS, ExtractionResult, ObjectColor
from .base_extractor import BaseExtractor, ExtractionError
from .palette import extract_palette

logger = logging.getLogger(__name__)

NO_CODE_VALUES = {"", "null", "none", "n/a", "no code", "no code detected"}


class VisionModelNotFoundError(ExtractionError):
    """Raised when the vision model is not available in Ollama."""
    pass


class OllamaVisionExtractor(BaseExtractor):
    """
    Code extraction through an Ollama-served vision model.

    One HTTP call per photograph; the model is asked for a single JSON
    object which is parsed leniently.
    """

    EXTRACTION_PROMPT = (
        "This photograph shows a sample next to a handwritten label. "
        "Read the sample code on the label exactly as written "
        "(for example MWI.1.2.10A.5.3 or KEN.12.34B.5.6). "
        "Also transcribe any other visible text, describe the sampled object "
        "in one short sentence and list its up to 3 most prominent colors.\n\n"
        "Respond with ONLY a JSON object of this shape:\n"
        '{"code": "<code or null>", "otherText": "<text or null>", '
        '"objectDescription": "<sentence>", '
        '"objectColors": [{"color": "#rrggbb", "name": "<color name>"}], '
        '"confidence": <0.0-1.0>}'
    )

    def __init__(
        self,
        model: str = None,
        base_url: str = None,
        timeout: float = None,
        palette_fallback: bool = True,
    ):
        """
        Initialize vision extractor.

        Args:
            model: Ollama model name (default from settings)
            base_url: Ollama API base URL (default from settings)
            timeout: Per-request timeout in seconds
            palette_fallback: Derive colors with Pillow when the model gives none
        """
        self.model = model or settings.vision_model
        self.base_url = base_url or settings.ollama_base_url
        self.palette_fallback = palette_fallback
        self.client = httpx.Client(timeout=timeout or settings.vision_timeout_seconds)

    def _encode_image(self, image_path: Path) -> str:
        """Encode image to base64 for Ollama API."""
        with open(image_path, "rb") as f:
            image_data = f.read()
        return base64.b64encode(image_data).decode("utf-8")

    def _call_vision_api(self, image_data: str) -> str:
        """
        Call Ollama generate endpoint with the image and extraction prompt.

        Raises:
            VisionModelNotFoundError: If model not available
            ExtractionError: On connection or API errors
        """
        try:
            response = self.client.post(
                f"{self.base_url}/api/generate",
                json={
                    "model": self.model,
                    "prompt": self.EXTRACTION_PROMPT,
                    "images": [image_data],
                    "format": "json",
                    "stream": False,
                },
            )
            response.raise_for_status()
            return response.json()["response"].strip()

        except httpx.HTTPStatusError as e:
            if e.response.status_code == 404:
                raise VisionModelNotFoundError(
                    f"Model '{self.model}' not found. "
                    f"Pull it with: ollama pull {self.model}"
                ) from e
            raise ExtractionError(f"Vision API error: {e}") from e

        except httpx.ConnectError as e:
            raise ExtractionError(f"Cannot connect to Ollama at {self.base_url}") from e

        except (httpx.HTTPError, KeyError, ValueError) as e:
            raise ExtractionError(f"Vision API call failed: {e}") from e

    @staticmethod
    def _clean_text(value) -> Optional[str]:
        if value is None:
            return None
        text = str(value).strip()
        if text.lower() in NO_CODE_VALUES:
            return None
        return text

    def _parse_colors(self, raw) -> List[ObjectColor]:
        """Keep well-formed color entries, most prominent first."""
        colors = []
        if not isinstance(raw, list):
            return colors
        for entry in raw:
            if not isinstance(entry, dict):
                continue
            try:
                colors.append(ObjectColor(color=str(entry.get("color", "")), name=str(entry.get("name") or "")))
            except ValidationError:
                logger.debug(f"Skipping malformed color entry: {entry}")
            if len(colors) == MAX_COLORS:
                break
        return colors

    def _parse_response(self, response: str) -> ExtractionResult:
        """
        Parse the JSON object from the model response.

        Raises:
            ExtractionError: If no JSON object can be recovered
        """
        start = response.find("{")
        end = response.rfind("}") + 1
        if start < 0 or end <= start:
            raise ExtractionError(f"No JSON object in model response: {response[:100]!r}")

        try:
            data = json.loads(response[start:end])
        except json.JSONDecodeError as e:
            raise ExtractionError(f"Failed to parse model JSON: {e}") from e

        try:
            confidence = float(data.get("confidence") or 0.0)
        except (TypeError, ValueError):
            confidence = 0.0

        return ExtractionResult(
            code=self._clean_text(data.get("code")),
            other_text=self._clean_text(data.get("otherText")),
            object_description=self._clean_text(data.get("objectDescription")),
            object_colors=self._parse_colors(data.get("objectColors")),
            confidence=max(0.0, min(1.0, confidence)),
        )

    def extract(self, image_path: Path) -> ExtractionResult:
        """
        Run code extraction on one photograph.

        Raises:
            VisionModelNotFoundError: If model not available
            ExtractionError: If the file is missing or the call fails
        """
        image_path = Path(image_path)
        if not image_path.exists():
            raise ExtractionError(f"Image not found: {image_path}")

        logger.info(f"Extracting code with {self.model}: {image_path.name}")

        image_data = self._encode_image(image_path)
        result = self._parse_response(self._call_vision_api(image_data))

        if not result.object_colors and self.palette_fallback:
            try:
                result.object_colors = extract_palette(image_path)
            except OSError as e:
                logger.warning(f"Palette fallback failed for {image_path.name}: {e}")

        logger.debug(f"Extraction for {image_path.name}: code={result.code!r} confidence={result.confidence}")
        return result

    def close(self) -> None:
        self.client.close()

    def __del__(self):
        """Clean up HTTP client."""
        if hasattr(self, "client"):
            self.client.close()
