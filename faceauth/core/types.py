"""Data types and structures for the face verification pipeline."""
from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable

import numpy as np

from faceauth.core.exceptions import FrameFormatError


class PixelFormat(Enum):
    """Planar layouts a camera frame may arrive in."""

    NV21 = "nv21"  # Y plane + interleaved VU plane
    YUV420 = "yuv420"  # I420: Y, U, V planes
    BGRA8888 = "bgra8888"
    BGR888 = "bgr888"
    RGB888 = "rgb888"

    @classmethod
    def from_raw(cls, raw: str | int) -> "PixelFormat":
        """Map a camera-reported format tag to a PixelFormat.

        Accepts the enum value (``"nv21"``) or the Android ``ImageFormat``
        constants camera stacks commonly report.

        Raises:
            FrameFormatError: If the tag is not a known planar layout.
        """
        if isinstance(raw, str):
            try:
                return cls(raw.lower())
            except ValueError:
                raise FrameFormatError(f"Unknown pixel format: {raw!r}") from None
        try:
            return _ANDROID_FORMATS[raw]
        except KeyError:
            raise FrameFormatError(f"Unknown pixel format code: {raw}") from None


# android.graphics.ImageFormat constants, plus the CoreVideo 32BGRA tag
_ANDROID_FORMATS = {
    17: PixelFormat.NV21,
    35: PixelFormat.YUV420,
    1111970369: PixelFormat.BGRA8888,
}


@dataclass(frozen=True)
class Plane:
    """One plane of a camera frame.

    Attributes:
        data: Raw plane bytes, possibly with row padding.
        bytes_per_row: Row stride in bytes.
        width: Plane width in pixels.
        height: Plane height in rows.
        bytes_per_pixel: Distance in bytes between neighbouring samples of
            this plane; 2 for chroma planes of semi-planar YUV buffers.
    """

    data: bytes
    bytes_per_row: int
    width: int
    height: int
    bytes_per_pixel: int = 1


@dataclass(frozen=True)
class RawFrame:
    """A camera frame as delivered by the camera source.

    Attributes:
        planes: Ordered planes of the buffer.
        width: Frame width in pixels (before rotation).
        height: Frame height in pixels (before rotation).
        pixel_format: Layout of ``planes``.
        rotation: Clockwise rotation in degrees needed to make the frame upright.
    """

    planes: tuple[Plane, ...]
    width: int
    height: int
    pixel_format: PixelFormat
    rotation: int = 0

    def __post_init__(self) -> None:
        if self.rotation not in (0, 90, 180, 270):
            raise FrameFormatError(f"Unsupported rotation: {self.rotation}")
        if self.width <= 0 or self.height <= 0:
            raise FrameFormatError(
                f"Invalid frame size: {self.width}x{self.height}"
            )

    @classmethod
    def from_bgr(cls, frame_bgr: np.ndarray, rotation: int = 0) -> "RawFrame":
        """Wrap an OpenCV BGR image as a single-plane frame."""
        if frame_bgr.ndim != 3 or frame_bgr.shape[2] != 3:
            raise FrameFormatError(f"Expected HxWx3 BGR image, got {frame_bgr.shape}")
        height, width = frame_bgr.shape[:2]
        data = np.ascontiguousarray(frame_bgr, dtype=np.uint8)
        plane = Plane(
            data=data.tobytes(), bytes_per_row=width * 3, width=width, height=height
        )
        return cls(
            planes=(plane,),
            width=width,
            height=height,
            pixel_format=PixelFormat.BGR888,
            rotation=rotation,
        )

    @classmethod
    def from_rgb(cls, image_rgb: np.ndarray) -> "RawFrame":
        """Wrap an upright RGB image, e.g. a decoded still photo."""
        if image_rgb.ndim != 3 or image_rgb.shape[2] != 3:
            raise FrameFormatError(f"Expected HxWx3 RGB image, got {image_rgb.shape}")
        height, width = image_rgb.shape[:2]
        data = np.ascontiguousarray(image_rgb, dtype=np.uint8)
        plane = Plane(
            data=data.tobytes(), bytes_per_row=width * 3, width=width, height=height
        )
        return cls(
            planes=(plane,),
            width=width,
            height=height,
            pixel_format=PixelFormat.RGB888,
        )


@dataclass(frozen=True)
class BBox:
    """Bounding box with pixel coordinates.

    Attributes:
        xmin: Left edge x-coordinate.
        ymin: Top edge y-coordinate.
        xmax: Right edge x-coordinate.
        ymax: Bottom edge y-coordinate.
    """

    xmin: int
    ymin: int
    xmax: int
    ymax: int

    @property
    def width(self) -> int:
        return self.xmax - self.xmin

    @property
    def height(self) -> int:
        return self.ymax - self.ymin

    def clamp(self, width: int, height: int) -> "BBox":
        """Intersect the box with the image rectangle ``[0, width] x [0, height]``.

        Args:
            width: Image width in pixels.
            height: Image height in pixels.

        Returns:
            New BBox with clamped coordinates.
        """
        return BBox(
            xmin=max(0, min(self.xmin, width)),
            ymin=max(0, min(self.ymin, height)),
            xmax=max(0, min(self.xmax, width)),
            ymax=max(0, min(self.ymax, height)),
        )

    def is_valid(self) -> bool:
        """Check if bounding box has positive area.

        Returns:
            True if box has positive width and height.
        """
        return self.xmax > self.xmin and self.ymax > self.ymin

    def as_dict(self) -> dict[str, int]:
        return {
            "xmin": self.xmin,
            "ymin": self.ymin,
            "xmax": self.xmax,
            "ymax": self.ymax,
        }


@dataclass(frozen=True)
class Detection:
    """Face detection result.

    Attributes:
        bbox: Bounding box in the coordinate space of the image it was
            detected on.
        score: Confidence score (0.0 to 1.0).
    """

    bbox: BBox
    score: float


@dataclass(frozen=True)
class AuthDecision:
    """Outcome of comparing a live face to the reference.

    Attributes:
        distance: Cosine distance in [0, 2] (lower is more similar).
        authorized: True if ``distance < threshold``.
        threshold: Threshold the decision was made with.
    """

    distance: float
    authorized: bool
    threshold: float

    @property
    def label(self) -> str:
        return "AUTHORIZED" if self.authorized else "NOT AUTHORIZED"

    def as_dict(self) -> JSONDict:
        return {
            "distance": self.distance,
            "authorized": self.authorized,
            "threshold": self.threshold,
        }


class AuthState(Enum):
    """Stream controller states."""

    IDLE = "idle"
    DETECTING = "detecting"
    AUTHORIZED = "authorized"
    REJECTED = "rejected"
    ERROR = "error"


JSONDict = dict[str, Any]
DecisionSink = Callable[[AuthDecision], None]
