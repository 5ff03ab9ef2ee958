"""Pytest fixtures and test doubles for faceauth tests."""
from __future__ import annotations

import io
import threading
from pathlib import Path
from typing import Optional, Sequence

import numpy as np
import pytest
from PIL import Image

from faceauth.core.face_embed import FaceEmbedder
from faceauth.core.model_cache import ModelHandle
from faceauth.core.normalize import ImageNormalizer
from faceauth.core.reference import ReferenceStore
from faceauth.core.similarity import SimilarityEngine
from faceauth.core.stream import StreamController
from faceauth.core.types import BBox, Detection, RawFrame

TENSOR_SIZE = 16
EMBEDDING_SIZE = 8


def unit(index: int, size: int = EMBEDDING_SIZE) -> np.ndarray:
    """Return the ``index``-th standard basis vector."""
    v = np.zeros(size, dtype=np.float32)
    v[index] = 1.0
    return v


class FakeEngine:
    """Inference engine returning preset vectors.

    ``outputs`` are returned in order; the last one repeats. When ``gate``
    is given, ``invoke`` blocks until it is set.
    """

    def __init__(
        self,
        outputs: Optional[Sequence[np.ndarray]] = None,
        tensor_size: int = TENSOR_SIZE,
        fail: bool = False,
        gate: Optional[threading.Event] = None,
    ) -> None:
        self.outputs = list(outputs) if outputs is not None else [unit(0)]
        self.tensor_size = tensor_size
        self.fail = fail
        self.gate = gate
        self.calls = 0
        self.inputs: list[np.ndarray] = []

    @property
    def input_shape(self) -> tuple[int, ...]:
        return (1, self.tensor_size, self.tensor_size, 3)

    def invoke(self, input_float: np.ndarray) -> np.ndarray:
        self.calls += 1
        self.inputs.append(input_float.copy())
        if self.gate is not None:
            self.gate.wait(5)
        if self.fail:
            raise RuntimeError("engine exploded")
        out = self.outputs[min(self.calls - 1, len(self.outputs) - 1)]
        return np.asarray(out, dtype=np.float32).reshape(1, -1)


class FakeDetector:
    """Detector returning a fixed list of detections.

    When ``gate`` is given, ``detect`` sets ``started`` and then blocks
    until ``gate`` is set.
    """

    def __init__(
        self,
        detections: Optional[list[Detection]] = None,
        gate: Optional[threading.Event] = None,
    ) -> None:
        if detections is None:
            detections = [Detection(bbox=BBox(8, 8, 40, 40), score=0.9)]
        self.detections = detections
        self.gate = gate
        self.started = threading.Event()
        self.calls = 0
        self.images: list[np.ndarray] = []

    def detect(self, image_rgb: np.ndarray) -> list[Detection]:
        self.calls += 1
        self.images.append(image_rgb)
        self.started.set()
        if self.gate is not None:
            self.gate.wait(5)
        return list(self.detections)


def encode_jpeg(image_rgb: np.ndarray) -> bytes:
    buffer = io.BytesIO()
    Image.fromarray(image_rgb).save(buffer, format="JPEG", quality=95)
    return buffer.getvalue()


def encode_png(image_rgb: np.ndarray) -> bytes:
    buffer = io.BytesIO()
    Image.fromarray(image_rgb).save(buffer, format="PNG")
    return buffer.getvalue()


@pytest.fixture
def rgb_image() -> np.ndarray:
    """A 48x64 RGB test image with a gradient so crops differ."""
    ys, xs = np.mgrid[0:48, 0:64]
    image = np.stack(
        [(xs * 4) % 256, (ys * 5) % 256, np.full_like(xs, 90)], axis=-1
    )
    return image.astype(np.uint8)


@pytest.fixture
def frame(rgb_image: np.ndarray) -> RawFrame:
    return RawFrame.from_rgb(rgb_image)


@pytest.fixture
def reference_bytes() -> bytes:
    """PNG-encoded enrollment image."""
    image = np.full((48, 48, 3), 128, dtype=np.uint8)
    return encode_png(image)


@pytest.fixture
def reference_file(tmp_path: Path, reference_bytes: bytes) -> Path:
    path = tmp_path / "reference.png"
    path.write_bytes(reference_bytes)
    return path


@pytest.fixture
def normalizer() -> ImageNormalizer:
    return ImageNormalizer(tensor_size=TENSOR_SIZE)


def make_embedder(engine: FakeEngine) -> FaceEmbedder:
    return FaceEmbedder(ModelHandle.of(engine), embedding_size=EMBEDDING_SIZE)


def make_reference(
    normalizer: ImageNormalizer,
    reference_bytes: bytes,
    vector: Optional[np.ndarray] = None,
) -> ReferenceStore:
    """Create a ReferenceStore enrolled with ``vector`` (default e0)."""
    engine = FakeEngine([unit(0) if vector is None else vector])
    store = ReferenceStore(normalizer, make_embedder(engine))
    store.initialize(reference_bytes)
    return store


@pytest.fixture
def make_controller(normalizer: ImageNormalizer, reference_bytes: bytes):
    """Factory building a StreamController around fakes.

    Controllers are closed after the test.
    """
    created: list[StreamController] = []

    def _make(
        *,
        engine: Optional[FakeEngine] = None,
        detector: Optional[FakeDetector] = None,
        reference: Optional[ReferenceStore] = None,
        embedder: Optional[FaceEmbedder] = None,
        threshold: float = 0.4,
        sinks=(),
        run_timeout: float = 5.0,
    ) -> StreamController:
        if reference is None:
            reference = make_reference(normalizer, reference_bytes)
        if embedder is None:
            embedder = make_embedder(engine or FakeEngine([unit(0)]))
        controller = StreamController(
            detector=detector or FakeDetector(),
            normalizer=normalizer,
            embedder=embedder,
            reference=reference,
            similarity=SimilarityEngine(threshold=threshold),
            sinks=sinks,
            run_timeout=run_timeout,
        )
        created.append(controller)
        return controller

    yield _make

    for controller in created:
        controller.close(wait=False)
