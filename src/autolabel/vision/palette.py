"""
Dominant Color Palette

Pillow-based fallback for the object colors when the vision model does not
report any.
"""

import logging
from pathlib import Path
from typing import List, Tuple

import numpy as np
from PIL import Image

from ..models import MAX_COLORS, ObjectColor

logger = logging.getLogger(__name__)

# Reference colors used to name a palette entry
NAMED_COLORS: List[Tuple[str, Tuple[int, int, int]]] = [
    ("black", (0, 0, 0)),
    ("white", (255, 255, 255)),
    ("gray", (128, 128, 128)),
    ("silver", (192, 192, 192)),
    ("red", (220, 20, 60)),
    ("maroon", (128, 0, 0)),
    ("orange", (255, 140, 0)),
    ("yellow", (255, 215, 0)),
    ("olive", (128, 128, 0)),
    ("green", (34, 139, 34)),
    ("teal", (0, 128, 128)),
    ("blue", (30, 80, 200)),
    ("navy", (0, 0, 128)),
    ("purple", (128, 0, 128)),
    ("pink", (255, 182, 193)),
    ("brown", (139, 69, 19)),
    ("tan", (210, 180, 140)),
    ("beige", (245, 245, 220)),
]

_NAMED_RGB = np.array([rgb for _, rgb in NAMED_COLORS], dtype=np.float32)


def nearest_color_name(rgb: Tuple[int, int, int]) -> str:
    """Name of the closest reference color in RGB space."""
    distances = np.linalg.norm(_NAMED_RGB - np.array(rgb, dtype=np.float32), axis=1)
    return NAMED_COLORS[int(np.argmin(distances))][0]


def to_hex(rgb: Tuple[int, int, int]) -> str:
    return "#{:02x}{:02x}{:02x}".format(*rgb)


def extract_palette(image_path: Path, count: int = MAX_COLORS) -> List[ObjectColor]:
    """
    Find the most prominent colors of an image.

    The image is downscaled and quantized; colors are returned most
    frequent first.

    Args:
        image_path: Path to image file
        count: Number of colors to return (at most 3)

    Returns:
        List of ObjectColor ordered by prominence
    """
    count = max(1, min(count, MAX_COLORS))

    with Image.open(image_path) as img:
        img = img.convert("RGB")
        img.thumbnail((150, 150))
        quantized = img.quantize(colors=max(count * 2, 8))

    palette = quantized.getpalette() or []
    color_counts = sorted(quantized.getcolors() or [], reverse=True)

    colors = []
    for _, index in color_counts[:count]:
        rgb = tuple(palette[index * 3:index * 3 + 3])
        if len(rgb) < 3:
            continue
        colors.append(ObjectColor(color=to_hex(rgb), name=nearest_color_name(rgb)))

    logger.debug(f"Palette for {Path(image_path).name}: {[c.color for c in colors]}")
    return colors
