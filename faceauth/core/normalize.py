"""Face crop canonicalization into fixed-size embedder input tensors."""
from __future__ import annotations

from dataclasses import dataclass

import cv2
import numpy as np

from faceauth.core.exceptions import DegenerateCropError
from faceauth.core.types import BBox
from faceauth.core.validation import validate_positive_int

PIXEL_CENTER = 128.0
PIXEL_SCALE = 128.0


@dataclass(frozen=True)
class ImageNormalizer:
    """Crops a face and maps it to a ``(T, T, 3)`` float32 RGB tensor.

    ``image`` and ``bbox`` passed to :meth:`normalize` must share one
    coordinate space: the box has to come from a detector that ran on this
    exact array. A box detected on a rotated or rescaled copy will crop the
    wrong pixels without any error being raised.

    Attributes:
        tensor_size: Edge length T of the output tensor.
    """

    tensor_size: int = 160

    def __post_init__(self) -> None:
        validate_positive_int("tensor_size", self.tensor_size)

    def normalize(self, image_rgb: np.ndarray, bbox: BBox) -> np.ndarray:
        """Crop ``bbox`` out of ``image_rgb`` and build the embedder input.

        Args:
            image_rgb: HxWx3 uint8 RGB image.
            bbox: Face box in ``image_rgb`` pixel coordinates.

        Returns:
            Tensor with shape (T, T, 3), dtype float32, values (v - 128) / 128.

        Raises:
            DegenerateCropError: If the box has no area inside the image.
        """
        if image_rgb.ndim != 3 or image_rgb.shape[2] != 3:
            raise ValueError(f"Expected HxWx3 RGB image, got {image_rgb.shape}")

        height, width = image_rgb.shape[:2]
        box = bbox.clamp(width, height)
        if not box.is_valid():
            raise DegenerateCropError(
                f"Face box {bbox} has no area inside {width}x{height} frame"
            )

        crop = image_rgb[box.ymin : box.ymax, box.xmin : box.xmax, :]
        chip = cv2.resize(
            np.ascontiguousarray(crop, dtype=np.uint8),
            dsize=(self.tensor_size, self.tensor_size),
            interpolation=cv2.INTER_LINEAR,
        )
        return (chip.astype(np.float32) - PIXEL_CENTER) / PIXEL_SCALE

    def normalize_whole(self, image_rgb: np.ndarray) -> np.ndarray:
        """Normalize the full image, treating it as the face box."""
        height, width = image_rgb.shape[:2]
        return self.normalize(image_rgb, BBox(0, 0, width, height))
