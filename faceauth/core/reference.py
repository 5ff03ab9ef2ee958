"""Write-once store for the enrolled reference embedding."""
from __future__ import annotations

import threading
from concurrent.futures import Future
from typing import Optional

import numpy as np

from faceauth.core.exceptions import ReferenceAlreadySetError, ReferenceNotReadyError
from faceauth.core.face_detect import FaceDetector
from faceauth.core.face_embed import FaceEmbedder
from faceauth.core.image_io import decode_rgb
from faceauth.core.logger import get_logger
from faceauth.core.normalize import ImageNormalizer

logger = get_logger("reference")


class ReferenceStore:
    """Holds exactly one reference embedding, computed from an enrollment image.

    The embedding is written once and is read-only afterwards, so readers do
    not need to synchronize with each other. Until enrollment completes
    :meth:`get` raises :class:`ReferenceNotReadyError`.

    Enrollment policy: if a detector is given, the best detected face is
    cropped; when it finds none (or there is no detector) the whole image is
    treated as the face.

    Detection and extraction hold ``engine_lock``. Pass the lock of the
    :class:`StreamController` sharing the same detector and embedder so
    enrollment never enters an engine while a live frame is using it.
    """

    def __init__(
        self,
        normalizer: ImageNormalizer,
        embedder: FaceEmbedder,
        detector: Optional[FaceDetector] = None,
        engine_lock: Optional[threading.Lock] = None,
    ) -> None:
        self.normalizer = normalizer
        self.embedder = embedder
        self.detector = detector
        self.engine_lock = engine_lock or threading.Lock()
        self._embedding: Optional[np.ndarray] = None
        self._claimed = False
        self._lock = threading.Lock()
        self._ready = threading.Event()

    def _claim(self) -> None:
        with self._lock:
            if self._claimed:
                raise ReferenceAlreadySetError("Reference embedding is already enrolled")
            self._claimed = True

    def _release_claim(self) -> None:
        with self._lock:
            self._claimed = False

    def _compute(self, image_bytes: bytes) -> np.ndarray:
        image = decode_rgb(image_bytes)

        tensor = None
        if self.detector is not None:
            with self.engine_lock:
                detections = self.detector.detect(image)
            if detections:
                tensor = self.normalizer.normalize(image, detections[0].bbox)
            else:
                logger.warning("No face found in enrollment image, using whole image")
        if tensor is None:
            tensor = self.normalizer.normalize_whole(image)

        with self.engine_lock:
            return self.embedder.extract(tensor)

    def _store(self, embedding: np.ndarray) -> None:
        embedding = np.array(embedding, dtype=np.float32, copy=True)
        embedding.flags.writeable = False
        self._embedding = embedding
        self._ready.set()
        logger.info(f"Reference embedding enrolled (dim={embedding.size})")

    def initialize(self, image_bytes: bytes) -> np.ndarray:
        """Compute and store the reference embedding in the calling thread.

        A failed enrollment may be retried; a successful one may not.

        Raises:
            ReferenceAlreadySetError: If enrollment already ran or is running.
            FaceAuthError: If decoding, normalization or extraction fails.
        """
        self._claim()
        try:
            embedding = self._compute(image_bytes)
        except Exception:
            self._release_claim()
            raise
        self._store(embedding)
        return self.get()

    def initialize_async(
        self, image_bytes: bytes, model_timeout: Optional[float] = None
    ) -> "Future[np.ndarray]":
        """Run :meth:`initialize` on a daemon thread.

        Args:
            image_bytes: Encoded enrollment image.
            model_timeout: How long to wait for a still loading embedding
                model before extracting; None waits indefinitely.

        Returns:
            Future resolved with the embedding, or with the enrollment error.
        """
        self._claim()
        future: Future[np.ndarray] = Future()

        def _work() -> None:
            try:
                self.embedder.model.wait(model_timeout)
                embedding = self._compute(image_bytes)
            except Exception as e:
                self._release_claim()
                logger.error(f"Reference enrollment failed: {e}")
                future.set_exception(e)
                return
            self._store(embedding)
            future.set_result(self._embedding)

        future.set_running_or_notify_cancel()
        threading.Thread(target=_work, name="enroll-reference", daemon=True).start()
        return future

    @property
    def is_ready(self) -> bool:
        return self._ready.is_set()

    def wait_ready(self, timeout: Optional[float] = None) -> bool:
        """Block until the reference is enrolled or ``timeout`` elapses."""
        return self._ready.wait(timeout)

    def get(self) -> np.ndarray:
        """Return the read-only reference embedding.

        Raises:
            ReferenceNotReadyError: If enrollment has not completed.
        """
        embedding = self._embedding
        if embedding is None:
            raise ReferenceNotReadyError("Reference embedding is not enrolled yet")
        return embedding
