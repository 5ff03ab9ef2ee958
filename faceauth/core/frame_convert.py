"""Conversion of planar camera frames into upright RGB arrays.

Detection and face cropping must run on the same pixels, in the same
coordinate space. Every consumer therefore works on the single array
returned by :func:`frame_to_rgb` rather than on the raw planes or on a
separately captured still image.
"""
from __future__ import annotations

import cv2
import numpy as np

from faceauth.core.exceptions import FrameFormatError
from faceauth.core.types import PixelFormat, Plane, RawFrame

_ROTATIONS = {
    90: cv2.ROTATE_90_CLOCKWISE,
    180: cv2.ROTATE_180,
    270: cv2.ROTATE_90_COUNTERCLOCKWISE,
}


def _plane_rows(plane: Plane, row_bytes: int, rows: int) -> np.ndarray:
    """Return a (rows, row_bytes) view of a plane with stride padding removed."""
    stride = plane.bytes_per_row
    if stride < row_bytes:
        raise FrameFormatError(
            f"Row stride {stride} is smaller than row length {row_bytes}"
        )

    buf = np.frombuffer(plane.data, dtype=np.uint8)
    needed = stride * (rows - 1) + row_bytes
    if buf.size < needed:
        raise FrameFormatError(
            f"Plane holds {buf.size} bytes, expected at least {needed}"
        )
    # The last row is often not padded out to the full stride
    if buf.size < stride * rows:
        buf = np.concatenate([buf, np.zeros(stride * rows - buf.size, np.uint8)])

    return buf[: stride * rows].reshape(rows, stride)[:, :row_bytes]


def _chroma(plane: Plane, width: int, height: int) -> np.ndarray:
    step = plane.bytes_per_pixel
    rows = _plane_rows(plane, step * (width - 1) + 1, height)
    return rows[:, ::step]


def _expect_planes(frame: RawFrame, *counts: int) -> None:
    if len(frame.planes) not in counts:
        raise FrameFormatError(
            f"{frame.pixel_format.name} frame needs {' or '.join(map(str, counts))} "
            f"plane(s), got {len(frame.planes)}"
        )


def _expect_even(frame: RawFrame) -> None:
    if frame.width % 2 or frame.height % 2:
        raise FrameFormatError(
            f"YUV frames need even dimensions, got {frame.width}x{frame.height}"
        )


def _nv21_to_rgb(frame: RawFrame) -> np.ndarray:
    _expect_planes(frame, 1, 2)
    _expect_even(frame)
    w, h = frame.width, frame.height
    if len(frame.planes) == 1:
        yuv = _plane_rows(frame.planes[0], w, h + h // 2)
    else:
        y = _plane_rows(frame.planes[0], w, h)
        vu = _plane_rows(frame.planes[1], w, h // 2)
        yuv = np.vstack([y, vu])
    return cv2.cvtColor(np.ascontiguousarray(yuv), cv2.COLOR_YUV2RGB_NV21)


def _i420_to_rgb(frame: RawFrame) -> np.ndarray:
    _expect_planes(frame, 3)
    _expect_even(frame)
    w, h = frame.width, frame.height
    y = _plane_rows(frame.planes[0], w, h)
    u = _chroma(frame.planes[1], w // 2, h // 2)
    v = _chroma(frame.planes[2], w // 2, h // 2)
    yuv = np.concatenate([y.ravel(), u.ravel(), v.ravel()]).reshape(h + h // 2, w)
    return cv2.cvtColor(yuv, cv2.COLOR_YUV2RGB_I420)


def _packed_to_rgb(frame: RawFrame, channels: int, code: int | None) -> np.ndarray:
    _expect_planes(frame, 1)
    w, h = frame.width, frame.height
    rows = _plane_rows(frame.planes[0], w * channels, h)
    image = np.ascontiguousarray(rows).reshape(h, w, channels)
    if code is None:
        return image.copy()
    return cv2.cvtColor(image, code)


def frame_to_rgb(frame: RawFrame) -> np.ndarray:
    """Convert a camera frame into an upright HxWx3 uint8 RGB array.

    Args:
        frame: Frame as delivered by the camera source.

    Returns:
        RGB array; width and height are swapped for 90/270 degree rotations.

    Raises:
        FrameFormatError: If the buffer does not match its declared layout.
    """
    fmt = frame.pixel_format
    if fmt is PixelFormat.NV21:
        rgb = _nv21_to_rgb(frame)
    elif fmt is PixelFormat.YUV420:
        rgb = _i420_to_rgb(frame)
    elif fmt is PixelFormat.BGRA8888:
        rgb = _packed_to_rgb(frame, 4, cv2.COLOR_BGRA2RGB)
    elif fmt is PixelFormat.BGR888:
        rgb = _packed_to_rgb(frame, 3, cv2.COLOR_BGR2RGB)
    elif fmt is PixelFormat.RGB888:
        rgb = _packed_to_rgb(frame, 3, None)
    else:
        raise FrameFormatError(f"Unsupported pixel format: {fmt}")

    if frame.rotation:
        rgb = cv2.rotate(rgb, _ROTATIONS[frame.rotation])
    return rgb
