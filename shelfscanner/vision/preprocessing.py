"""
Image Upload Validation

Checks an uploaded shelf photo before any session is created: declared type,
size limit, and that Pillow can actually decode it.
"""

import io
from typing import Optional

from loguru import logger
from PIL import Image, UnidentifiedImageError

from ..errors import PayloadTooLargeError, ValidationError

# Pillow format name -> MIME type sent to the vision model
FORMAT_MIME_TYPES = {
    "JPEG": "image/jpeg",
    "PNG": "image/png",
    "WEBP": "image/webp",
    "GIF": "image/gif",
    "BMP": "image/bmp",
    "TIFF": "image/tiff",
    "HEIF": "image/heif",
}


def validate_image(
    data: bytes,
    content_type: Optional[str],
    max_bytes: int,
) -> str:
    """
    Validate an upload and return the MIME type to forward.

    Raises:
        ValidationError: empty payload, non-image content type, undecodable data
        PayloadTooLargeError: payload above ``max_bytes``
    """
    if not data:
        raise ValidationError("Empty upload", detail="No image data received")

    if content_type and not content_type.lower().startswith("image/"):
        raise ValidationError(
            "Only image files are allowed",
            detail=f"Unsupported content type: {content_type}",
        )

    if len(data) > max_bytes:
        raise PayloadTooLargeError(len(data), max_bytes)

    try:
        with Image.open(io.BytesIO(data)) as img:
            image_format = img.format
            img.verify()
    except (UnidentifiedImageError, OSError, SyntaxError) as e:
        logger.warning(f"Rejected undecodable upload: {e}")
        raise ValidationError("Invalid image", detail="File could not be decoded as an image")

    return FORMAT_MIME_TYPES.get(image_format or "", content_type or "image/jpeg")
