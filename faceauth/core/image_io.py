"""Image input utilities for loading still images as RGB arrays."""
from __future__ import annotations

import io
from pathlib import Path
from typing import Iterator

import numpy as np
from PIL import Image, ImageOps

from faceauth.core.validation import validate_image_bytes

IMAGE_EXTS = {".jpg", ".jpeg", ".png", ".bmp", ".webp"}


def iter_images(path: Path) -> Iterator[Path]:
    """Iterate over image files in a path.

    If path is a file, yields that file if it's an image.
    If path is a directory, recursively yields all image files.

    Args:
        path: File or directory path to search.

    Yields:
        Path objects for each image file found.
    """
    if path.is_file() and path.suffix.lower() in IMAGE_EXTS:
        yield path
        return

    for p in sorted(path.rglob("*")):
        if p.is_file() and p.suffix.lower() in IMAGE_EXTS:
            yield p


def decode_rgb(image_bytes: bytes) -> np.ndarray:
    """Decode encoded image bytes into an upright HxWx3 uint8 RGB array.

    EXIF orientation is applied so phone photos come out upright.

    Raises:
        ValidationError: If the bytes are not an acceptable image.
    """
    validate_image_bytes(image_bytes)
    with Image.open(io.BytesIO(image_bytes)) as image:
        upright = ImageOps.exif_transpose(image)
        return np.asarray(upright.convert("RGB"), dtype=np.uint8).copy()


def load_rgb(path: Path) -> np.ndarray:
    """Load an image file as an RGB array.

    Args:
        path: Path to image file.

    Returns:
        HxWx3 uint8 RGB array.
    """
    return decode_rgb(Path(path).read_bytes())
