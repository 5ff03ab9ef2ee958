"""Tests for face crop normalization."""
from __future__ import annotations

import numpy as np
import pytest

from faceauth.core.exceptions import DegenerateCropError, ValidationError
from faceauth.core.normalize import ImageNormalizer
from faceauth.core.types import BBox

from conftest import TENSOR_SIZE


class TestImageNormalizer:
    """Tests for ImageNormalizer."""

    def test_output_shape_and_dtype(self, normalizer, rgb_image):
        """Test the tensor has shape (T, T, 3) and dtype float32."""
        tensor = normalizer.normalize(rgb_image, BBox(8, 8, 40, 40))

        assert tensor.shape == (TENSOR_SIZE, TENSOR_SIZE, 3)
        assert tensor.dtype == np.float32

    def test_value_mapping_and_channel_order(self, normalizer):
        """Test pixel values map to (v - 128) / 128 in RGB order."""
        image = np.zeros((20, 20, 3), dtype=np.uint8)
        image[..., 0] = 255
        image[..., 1] = 0
        image[..., 2] = 128

        tensor = normalizer.normalize_whole(image)

        np.testing.assert_allclose(tensor[..., 0], (255 - 128) / 128)
        np.testing.assert_allclose(tensor[..., 1], -1.0)
        np.testing.assert_allclose(tensor[..., 2], 0.0)
        assert tensor.min() >= -1.0 and tensor.max() <= 1.0

    def test_is_pure(self, normalizer, rgb_image):
        """Test normalization is repeatable and leaves the input untouched."""
        bbox = BBox(3, 5, 37, 41)
        original = rgb_image.copy()

        first = normalizer.normalize(rgb_image, bbox)
        second = normalizer.normalize(rgb_image, bbox)

        assert first.tobytes() == second.tobytes()
        np.testing.assert_array_equal(rgb_image, original)

    def test_partial_box_is_clamped(self, normalizer, rgb_image):
        """Test boxes reaching outside the image are clamped."""
        clamped = normalizer.normalize(rgb_image, BBox(-20, -20, 30, 30))
        inside = normalizer.normalize(rgb_image, BBox(0, 0, 30, 30))

        np.testing.assert_array_equal(clamped, inside)

    def test_box_outside_frame_raises(self, normalizer, rgb_image):
        """Test a box outside the image raises DegenerateCropError."""
        with pytest.raises(DegenerateCropError):
            normalizer.normalize(rgb_image, BBox(100, 100, 200, 200))

    def test_inverted_box_raises(self, normalizer, rgb_image):
        """Test an inverted box raises DegenerateCropError."""
        with pytest.raises(DegenerateCropError):
            normalizer.normalize(rgb_image, BBox(30, 10, 10, 40))

    def test_crop_uses_box_region(self, normalizer):
        """Test only the boxed pixels reach the tensor."""
        image = np.zeros((32, 64, 3), dtype=np.uint8)
        image[:, 32:, 2] = 255  # right half blue

        left = normalizer.normalize(image, BBox(0, 0, 32, 32))
        right = normalizer.normalize(image, BBox(32, 0, 64, 32))

        np.testing.assert_allclose(left[..., 2], -1.0)
        np.testing.assert_allclose(right[..., 2], (255 - 128) / 128)

    def test_rejects_non_rgb(self, normalizer):
        """Test non-RGB arrays are rejected."""
        with pytest.raises(ValueError):
            normalizer.normalize(np.zeros((10, 10), np.uint8), BBox(0, 0, 5, 5))

    def test_invalid_tensor_size(self):
        """Test a non-positive tensor size is rejected."""
        with pytest.raises(ValidationError):
            ImageNormalizer(tensor_size=0)
