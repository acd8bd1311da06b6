"""
Photo Ingestion

Creates pending photo records for the image files of a directory.
"""

import logging
from datetime import datetime
from pathlib import Path
from typing import List, Optional

from PIL import Image

from .config import settings
from .models import PhotoRecord
from .store import RecordStore

logger = logging.getLogger(__name__)

EXIF_IFD = 0x8769
EXIF_DATE_TAGS = [
    (EXIF_IFD, 36867),  # DateTimeOriginal
    (EXIF_IFD, 36868),  # DateTimeDigitized
    (None, 306),  # DateTime
]
EXIF_DATE_FORMAT = "%Y:%m:%d %H:%M:%S"
EARLIEST_CAPTURE = datetime(1990, 1, 1)


def read_capture_timestamp(image_path: Path) -> datetime:
    """
    Best known capture time of a photograph.

    EXIF dates are preferred; the file modification time is the fallback.
    """
    try:
        with Image.open(image_path) as img:
            exif = img.getexif()
            for ifd, tag in EXIF_DATE_TAGS:
                source = exif.get_ifd(ifd) if ifd is not None else exif
                value = source.get(tag)
                if not value:
                    continue
                try:
                    captured = datetime.strptime(str(value).strip(), EXIF_DATE_FORMAT)
                except ValueError:
                    continue
                if EARLIEST_CAPTURE <= captured <= datetime.now():
                    return captured
    except OSError as e:
        logger.debug(f"No EXIF date for {image_path.name}: {e}")

    return datetime.fromtimestamp(image_path.stat().st_mtime)


def ingest_directory(
    store: RecordStore,
    directory: Path,
    recursive: bool = True,
    extensions: Optional[List[str]] = None,
    reset: bool = False,
) -> List[str]:
    """
    Add all images from a directory as pending records.

    Records are created in capture order so creation order follows the
    photographing session.

    Args:
        store: Record store to fill
        directory: Directory to scan
        recursive: Whether to scan subdirectories
        extensions: File extensions to include (default from settings)
        reset: Delete every existing record first (new batch)

    Returns:
        List of created record ids
    """
    extensions = {e.lower().lstrip(".") for e in (extensions or settings.image_extensions)}
    directory = Path(directory)

    if not directory.is_dir():
        raise NotADirectoryError(f"Not a directory: {directory}")

    if reset:
        store.delete_all()

    pattern = "**/*" if recursive else "*"
    max_bytes = settings.max_image_size_mb * 1024 * 1024

    candidates = []
    for image_file in sorted(directory.glob(pattern)):
        if not image_file.is_file() or image_file.suffix.lower().lstrip(".") not in extensions:
            continue
        if image_file.stat().st_size > max_bytes:
            logger.warning(f"Skipping {image_file.name}: larger than {settings.max_image_size_mb}MB")
            continue
        candidates.append((read_capture_timestamp(image_file), image_file))

    candidates.sort(key=lambda item: item[0])

    record_ids = []
    for captured, image_file in candidates:
        record = store.create(PhotoRecord(
            original_name=str(image_file.relative_to(directory)),
            file_path=str(image_file.absolute()),
            capture_timestamp=captured,
        ))
        record_ids.append(record.id)

    logger.info(f"Added {len(record_ids)} images from {directory}")
    return record_ids
