"""Camera source producing RawFrames from an OpenCV video device."""
from __future__ import annotations

from dataclasses import dataclass
from typing import Iterator, Optional

import cv2

from faceauth.core.logger import get_logger
from faceauth.core.types import RawFrame

logger = get_logger("video_capture")


@dataclass
class VideoCapture:
    """Manages video capture from webcam or other video sources.

    Attributes:
        camera_index: Index of the camera device (0 for default).
        width: Desired frame width.
        height: Desired frame height.
        rotation: Clockwise rotation to attach to every frame.
    """

    camera_index: int = 0
    width: int = 640
    height: int = 480
    rotation: int = 0

    def __post_init__(self) -> None:
        """Initialize the video capture."""
        self._cap: Optional[cv2.VideoCapture] = None

    def open(self) -> None:
        """Open the video capture device.

        Raises:
            RuntimeError: If no camera can be opened.
        """
        if self._cap is not None and self._cap.isOpened():
            return

        self._cap = cv2.VideoCapture(self.camera_index)
        if not self._cap.isOpened():
            for idx in range(5):
                if idx == self.camera_index:
                    continue
                self._cap = cv2.VideoCapture(idx)
                if self._cap.isOpened():
                    logger.warning(
                        f"Camera {self.camera_index} unavailable, using camera {idx}"
                    )
                    self.camera_index = idx
                    break

        if not self._cap.isOpened():
            raise RuntimeError("No camera found. Please ensure a camera is connected.")

        self._cap.set(cv2.CAP_PROP_FRAME_WIDTH, self.width)
        self._cap.set(cv2.CAP_PROP_FRAME_HEIGHT, self.height)

    def read(self) -> Optional[RawFrame]:
        """Read the next frame.

        Returns:
            RawFrame, or None if the device returned no frame.
        """
        if self._cap is None or not self._cap.isOpened():
            return None

        ret, frame_bgr = self._cap.read()
        if not ret or frame_bgr is None:
            return None

        return RawFrame.from_bgr(frame_bgr, rotation=self.rotation)

    def frames(self) -> Iterator[RawFrame]:
        """Yield frames until the device stops delivering them."""
        while True:
            frame = self.read()
            if frame is None:
                logger.info("Camera stopped delivering frames")
                return
            yield frame

    def is_opened(self) -> bool:
        """Check if the video capture is open."""
        return self._cap is not None and self._cap.isOpened()

    def release(self) -> None:
        """Release the video capture device."""
        if self._cap is not None:
            self._cap.release()
            self._cap = None

    def __enter__(self) -> "VideoCapture":
        """Context manager entry."""
        self.open()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        """Context manager exit."""
        self.release()
