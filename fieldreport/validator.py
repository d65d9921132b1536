"""
Image intake validation - media type, size, decodability, and resolution.

All pre-analysis checks in a single module. Cheap checks run before any
decode so that obviously bad input never costs a decode or an oracle call.
"""

import io

from PIL import Image

from fieldreport.models import (
    RawInput,
    ValidatedImage,
    UnsupportedTypeError,
    TooLargeError,
    CorruptImageError,
    TooSmallError,
)
from fieldreport.config import (
    MAX_FILE_SIZE_MB,
    MIN_RESOLUTION,
    ALLOWED_MEDIA_TYPES,
    MEDIA_TYPE_ALIASES,
)


def validate_image(raw: RawInput) -> ValidatedImage:
    """
    Validates media type, size, decodability, and resolution.

    Performs checks in order:
    1. Declared media type
    2. File size
    3. Decode
    4. Resolution

    Raises:
        UnsupportedTypeError: media type not jpeg/png/webp.
        TooLargeError: more than MAX_FILE_SIZE_MB.
        CorruptImageError: bytes cannot be decoded as an image.
        TooSmallError: either side below MIN_RESOLUTION.
    """
    media_type = normalize_media_type(raw.media_type)
    if media_type not in ALLOWED_MEDIA_TYPES:
        raise UnsupportedTypeError(
            f"Unsupported file type: {raw.media_type or 'unknown'} "
            f"(only JPG, PNG, WEBP allowed)"
        )

    size_mb = raw.size_bytes / (1024 * 1024)
    if size_mb > MAX_FILE_SIZE_MB:
        raise TooLargeError(
            f"Image too large: {size_mb:.1f}MB (max {MAX_FILE_SIZE_MB:g}MB)"
        )

    try:
        img = Image.open(io.BytesIO(raw.data))
        img.verify()
        img = Image.open(io.BytesIO(raw.data))
        img.load()
    except Exception as e:
        raise CorruptImageError("Image file is corrupted or not a valid image") from e

    width, height = img.size
    if width < MIN_RESOLUTION or height < MIN_RESOLUTION:
        raise TooSmallError(
            f"Resolution too low: {width}x{height}px (minimum {MIN_RESOLUTION}x{MIN_RESOLUTION}). "
            "Images that look like thumbnails or search-result downloads are refused; "
            "please use an original camera photo.",
            width=width,
            height=height,
        )

    return ValidatedImage(raw=raw, width=width, height=height, format=img.format)


def normalize_media_type(media_type: str) -> str:
    """Lower-cased media type without parameters, with known aliases folded."""
    base = (media_type or "").split(";", 1)[0].strip().lower()
    return MEDIA_TYPE_ALIASES.get(base, base)
