"""
possumbly.services.upload_service — Image Files on Disk
========================================================

Template uploads and rendered memes live under ``UPLOAD_DIR``
(``$POSSUMBLY_UPLOAD_DIR``, default ``data/uploads``)::

    uploads/
      templates/<id>.<ext>     extension chosen from the MIME type
      memes/<meme_id>.<fmt>    png | jpeg | webp

Every byte string is opened with Pillow before it is written, and every
stored filename is matched against its pattern before it becomes a path.
"""

from __future__ import annotations

import asyncio
import base64
import binascii
import logging
import os
from io import BytesIO
from pathlib import Path

from PIL import Image, UnidentifiedImageError

from possumbly.constants import (
    MAX_IMAGE_DIMENSION,
    MAX_RENDER_BASE64_LENGTH,
    MAX_TEMPLATE_FILE_SIZE,
    RENDER_DATA_URL_PATTERN,
    RENDER_FILENAME_PATTERN,
    TEMPLATE_EXTENSIONS,
    TEMPLATE_FILENAME_PATTERN,
    TEMPLATE_MIME_EXTENSIONS,
)
from possumbly.database.models import new_id
from possumbly.errors import BadRequestError, InvalidImageError

logger = logging.getLogger(__name__)

UPLOAD_DIR = Path(os.getenv("POSSUMBLY_UPLOAD_DIR", "data/uploads"))

TEMPLATES = "templates"
MEMES = "memes"
FILENAME_PATTERNS = {
    TEMPLATES: TEMPLATE_FILENAME_PATTERN,
    MEMES: RENDER_FILENAME_PATTERN,
}


def ensure_upload_dirs() -> None:
    """Create the upload directories if they don't exist."""
    for kind in FILENAME_PATTERNS:
        (UPLOAD_DIR / kind).mkdir(parents=True, exist_ok=True)


# ---------------------------------------------------------------------------
# Image inspection
# ---------------------------------------------------------------------------
def inspect_image(data: bytes, message: str = "Invalid image file") -> tuple[int, int]:
    """Return ``(width, height)`` of *data* or raise :class:`InvalidImageError`."""
    try:
        with Image.open(BytesIO(data)) as img:
            width, height = img.size
            img.verify()
    except (UnidentifiedImageError, OSError, SyntaxError, ValueError) as exc:
        raise InvalidImageError(message) from exc
    if not width or not height:
        raise InvalidImageError("Could not read image dimensions")
    return width, height


def _check_dimensions(width: int, height: int, message: str) -> None:
    if width > MAX_IMAGE_DIMENSION or height > MAX_IMAGE_DIMENSION:
        raise BadRequestError(message)


# ---------------------------------------------------------------------------
# Paths
# ---------------------------------------------------------------------------
def stored_path(kind: str, filename: str) -> Path:
    """Resolve a stored file, refusing anything that fails its name pattern."""
    pattern = FILENAME_PATTERNS.get(kind)
    if pattern is None or not isinstance(filename, str) or not pattern.fullmatch(filename):
        raise BadRequestError("Invalid file path")
    return UPLOAD_DIR / kind / filename


def delete_stored(kind: str, filename: str) -> bool:
    """Remove a stored file.  Returns True if it existed and was deleted."""
    path = stored_path(kind, filename)
    if path.is_file():
        path.unlink()
        return True
    return False


# ---------------------------------------------------------------------------
# Templates
# ---------------------------------------------------------------------------
async def save_template_upload(
    filename: str | None, content: bytes, content_type: str | None
) -> tuple[str, int, int]:
    """Validate and persist a template image.

    Returns
    -------
    tuple[str, int, int]
        ``(stored_filename, width, height)``.

    Raises
    ------
    BadRequestError
        Wrong type, wrong extension, too large, unreadable or oversized.
    """
    if content_type not in TEMPLATE_MIME_EXTENSIONS:
        raise BadRequestError("Invalid file type. Only JPEG, PNG, GIF, and WebP are allowed.")

    if Path(filename or "").suffix.lower() not in TEMPLATE_EXTENSIONS:
        raise BadRequestError("Invalid file extension.")

    if len(content) > MAX_TEMPLATE_FILE_SIZE:
        raise BadRequestError(
            f"File too large (max {MAX_TEMPLATE_FILE_SIZE // 1024 // 1024}MB)"
        )

    width, height = inspect_image(content)
    _check_dimensions(
        width, height,
        f"Image dimensions too large (max {MAX_IMAGE_DIMENSION}x{MAX_IMAGE_DIMENSION})",
    )

    # Extension comes from the MIME type, never from the client's filename
    stored = f"{new_id()}{TEMPLATE_MIME_EXTENSIONS[content_type]}"
    dest = UPLOAD_DIR / TEMPLATES / stored
    dest.parent.mkdir(parents=True, exist_ok=True)
    await asyncio.to_thread(dest.write_bytes, content)

    logger.info("Stored template image %s (%dx%d)", stored, width, height)
    return stored, width, height


# ---------------------------------------------------------------------------
# Rendered memes
# ---------------------------------------------------------------------------
def decode_render(image_data: object) -> tuple[str, bytes]:
    """Parse a ``data:image/…;base64,…`` URL into ``(format, bytes)``."""
    if not image_data or not isinstance(image_data, str):
        raise BadRequestError("Image data is required")

    match = RENDER_DATA_URL_PATTERN.match(image_data)
    if match is None:
        raise BadRequestError("Invalid image data format")

    fmt, payload = match.groups()
    if len(payload) > MAX_RENDER_BASE64_LENGTH:
        raise BadRequestError("Image data too large")

    try:
        data = base64.b64decode(payload)
    except (binascii.Error, ValueError) as exc:
        raise BadRequestError("Invalid image data") from exc

    width, height = inspect_image(data, "Invalid image data")
    _check_dimensions(width, height, "Image dimensions too large")
    return fmt, data


def write_render(meme_id: str, fmt: str, data: bytes, previous: str | None = None) -> str:
    """Write ``<meme_id>.<fmt>`` and remove the *previous* render if named."""
    filename = f"{meme_id}.{fmt}"
    if previous and RENDER_FILENAME_PATTERN.fullmatch(previous):
        delete_stored(MEMES, previous)

    dest = stored_path(MEMES, filename)
    dest.parent.mkdir(parents=True, exist_ok=True)
    dest.write_bytes(data)
    return filename
