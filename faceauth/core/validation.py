"""Input validation utilities for faceauth."""

from __future__ import annotations

import io
import math

from PIL import Image

from faceauth.core.exceptions import ValidationError
from faceauth.core.logger import get_logger

logger = get_logger("validation")

SUPPORTED_IMAGE_FORMATS = {"JPEG", "PNG", "BMP", "WEBP"}
MAX_IMAGE_DIMENSION = 10000


def validate_threshold(threshold: float) -> bool:
    """Validate a cosine distance threshold.

    Cosine distance lies in [0, 2], so thresholds outside that range would
    authorize everything or nothing.

    Raises:
        ValidationError: If threshold is invalid.
    """
    if isinstance(threshold, bool) or not isinstance(threshold, (int, float)):
        raise ValidationError("threshold must be a number")

    if math.isnan(threshold) or threshold < 0.0 or threshold > 2.0:
        raise ValidationError("threshold must be between 0.0 and 2.0")

    return True


def validate_score(score: float) -> bool:
    """Validate a detector confidence score in [0, 1].

    Raises:
        ValidationError: If score is invalid.
    """
    if isinstance(score, bool) or not isinstance(score, (int, float)):
        raise ValidationError("score must be a number")

    if not 0.0 <= score <= 1.0:
        raise ValidationError("score must be between 0.0 and 1.0")

    return True


def validate_positive_int(name: str, value: int) -> bool:
    """Validate that a size-like setting is a positive integer.

    Raises:
        ValidationError: If value is not a positive integer.
    """
    if isinstance(value, bool) or not isinstance(value, int) or value <= 0:
        raise ValidationError(f"{name} must be a positive integer, got {value!r}")

    return True


def validate_timeout(seconds: float) -> bool:
    """Validate a wall-clock budget in seconds.

    Raises:
        ValidationError: If seconds is not a positive finite number.
    """
    if isinstance(seconds, bool) or not isinstance(seconds, (int, float)):
        raise ValidationError("timeout must be a number")

    if not math.isfinite(seconds) or seconds <= 0:
        raise ValidationError("timeout must be a positive number of seconds")

    return True


def validate_image_bytes(
    image_bytes: bytes, max_size: int = 16 * 1024 * 1024
) -> bool:
    """Validate encoded image bytes before decoding.

    Checks size, that Pillow can verify the content, that the format is one
    we accept and that the dimensions are sane.

    Args:
        image_bytes: Encoded image content.
        max_size: Maximum allowed size in bytes (default: 16MB).

    Returns:
        True if valid.

    Raises:
        ValidationError: If the content is not an acceptable image.
    """
    if not image_bytes:
        raise ValidationError("image content is empty")

    if len(image_bytes) > max_size:
        max_size_mb = max_size / (1024 * 1024)
        raise ValidationError(f"image size exceeds maximum of {max_size_mb}MB")

    try:
        with Image.open(io.BytesIO(image_bytes)) as image:
            image.verify()
        # verify() leaves the image unusable, reopen for metadata
        with Image.open(io.BytesIO(image_bytes)) as image:
            image_format = image.format
            width, height = image.size
    except Exception as e:
        logger.warning(f"Image validation failed: {e}")
        raise ValidationError(f"Invalid or corrupted image: {e}") from e

    if image_format not in SUPPORTED_IMAGE_FORMATS:
        raise ValidationError(f"Unsupported image format: {image_format}")

    if width == 0 or height == 0:
        raise ValidationError("Image has invalid dimensions")

    if width > MAX_IMAGE_DIMENSION or height > MAX_IMAGE_DIMENSION:
        raise ValidationError(f"Image dimensions too large: {width}x{height}")

    return True
