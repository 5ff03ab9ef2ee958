"""Face detectors: OpenCV Haar cascade and TFLite SSD MobileNet V2."""
from __future__ import annotations

from dataclasses import dataclass
from typing import List, Optional, Protocol

import cv2
import numpy as np

from faceauth.config import DetectorMode
from faceauth.core.exceptions import ModelLoadError
from faceauth.core.tflite import TFLiteRunner
from faceauth.core.types import BBox, Detection


class FaceDetector(Protocol):
    """Face detection capability.

    ``detect`` returns boxes in the pixel space of the array it was given,
    best candidate first, and an empty list (never None) when no face is found.
    """

    def detect(self, image_rgb: np.ndarray) -> List[Detection]: ...


# (scaleFactor, minNeighbors) per mode
_HAAR_PARAMS = {
    DetectorMode.FAST: (1.3, 4),
    DetectorMode.ACCURATE: (1.1, 5),
}


class HaarFaceDetector:
    """Frontal face detector using the OpenCV Haar cascade bundled with cv2."""

    def __init__(
        self,
        mode: DetectorMode = DetectorMode.FAST,
        min_size: tuple[int, int] = (60, 60),
        cascade_path: Optional[str] = None,
    ) -> None:
        if cascade_path is None:
            cascade_path = cv2.data.haarcascades + "haarcascade_frontalface_default.xml"
        self.cascade = cv2.CascadeClassifier(cascade_path)
        if self.cascade.empty():
            raise ModelLoadError(f"Failed to load Haar cascade: {cascade_path}")
        self.mode = mode
        self.min_size = min_size

    def detect(self, image_rgb: np.ndarray) -> List[Detection]:
        """Detect faces; larger faces come first since the cascade has no scores."""
        h, w = image_rgb.shape[:2]
        gray = cv2.cvtColor(image_rgb, cv2.COLOR_RGB2GRAY)
        if self.mode is DetectorMode.ACCURATE:
            gray = cv2.equalizeHist(gray)

        scale_factor, min_neighbors = _HAAR_PARAMS[self.mode]
        faces = self.cascade.detectMultiScale(
            gray,
            scaleFactor=scale_factor,
            minNeighbors=min_neighbors,
            flags=cv2.CASCADE_SCALE_IMAGE,
            minSize=self.min_size,
        )
        if faces is None or len(faces) == 0:
            return []

        detections: List[Detection] = []
        for x, y, fw, fh in faces:
            bbox = BBox(
                xmin=int(x), ymin=int(y), xmax=int(x + fw), ymax=int(y + fh)
            ).clamp(w, h)
            if bbox.is_valid():
                detections.append(Detection(bbox=bbox, score=1.0))

        detections.sort(key=lambda d: d.bbox.width * d.bbox.height, reverse=True)
        return detections


@dataclass(frozen=True)
class SSDFaceDetector:
    """Face detector using SSD MobileNet V2 model.

    Attributes:
        runner: TFLite model runner for inference.
        threshold: Minimum confidence score.
        mode: FAST resizes bilinearly, ACCURATE uses area resampling.
    """

    runner: TFLiteRunner
    threshold: float = 0.5
    mode: DetectorMode = DetectorMode.FAST

    def detect(self, image_rgb: np.ndarray) -> List[Detection]:
        """Run SSD face detector and return detections in original image coordinates.

        Args:
            image_rgb: HxWx3 uint8 RGB image.

        Returns:
            List of Detection objects with pixel coordinates, best first.
        """
        orig_h, orig_w = image_rgb.shape[:2]

        _, in_h, in_w, _ = self.runner.input_shape
        interpolation = (
            cv2.INTER_AREA if self.mode is DetectorMode.ACCURATE else cv2.INTER_LINEAR
        )
        resized = cv2.resize(image_rgb, (in_w, in_h), interpolation=interpolation)

        # SSD postprocess models take uint8 input with a batch dimension
        input_np = np.expand_dims(np.asarray(resized, dtype=np.uint8), axis=0)

        return self._invoke_and_parse(input_np, orig_w, orig_h)

    def _invoke_and_parse(
        self, input_np: np.ndarray, orig_w: int, orig_h: int
    ) -> List[Detection]:
        # SSD postprocess outputs:
        # 0: boxes (N,4) [ymin,xmin,ymax,xmax] normalized
        # 1: classes (N,)
        # 2: scores (N,)
        # 3: count (1,)
        interpreter = self.runner.interpreter
        input_details = interpreter.get_input_details()[0]
        interpreter.set_tensor(input_details["index"], input_np)
        interpreter.invoke()

        def get_output(i: int) -> np.ndarray:
            od = interpreter.get_output_details()[i]
            return np.squeeze(interpreter.get_tensor(od["index"]).copy())

        boxes = get_output(0)
        scores = get_output(2)
        count = int(get_output(3))

        detections: List[Detection] = []
        for i in range(count):
            score = float(scores[i])
            if score < self.threshold:
                continue
            ymin, xmin, ymax, xmax = boxes[i]
            bbox = BBox(
                xmin=int(max(0.0, min(1.0, float(xmin))) * orig_w),
                ymin=int(max(0.0, min(1.0, float(ymin))) * orig_h),
                xmax=int(max(0.0, min(1.0, float(xmax))) * orig_w),
                ymax=int(max(0.0, min(1.0, float(ymax))) * orig_h),
            ).clamp(orig_w, orig_h)
            if bbox.is_valid():
                detections.append(Detection(bbox=bbox, score=score))

        detections.sort(key=lambda d: d.score, reverse=True)
        return detections
