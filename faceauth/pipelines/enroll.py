"""Session startup: model loading, detector selection and reference enrollment."""
from __future__ import annotations

import threading
from concurrent.futures import Future
from dataclasses import dataclass
from pathlib import Path
from typing import Iterable, Optional

import numpy as np

from faceauth.config import AuthConfig, DetectorBackend, Paths, resolve_model_paths
from faceauth.core.circuit_breaker import CircuitBreaker
from faceauth.core.exceptions import InferenceError
from faceauth.core.face_detect import FaceDetector, HaarFaceDetector, SSDFaceDetector
from faceauth.core.face_embed import FaceEmbedder
from faceauth.core.logger import get_logger
from faceauth.core.model_cache import ModelHandle, get_cached_model
from faceauth.core.normalize import ImageNormalizer
from faceauth.core.reference import ReferenceStore
from faceauth.core.similarity import SimilarityEngine
from faceauth.core.stream import StreamController
from faceauth.core.types import DecisionSink

logger = get_logger("enroll")


@dataclass
class AuthSession:
    """Components of one verification session, wired from an AuthConfig.

    Attributes:
        config: Pipeline tunables.
        detector: Face detector shared by enrollment and live frames.
        normalizer: Crop normalizer.
        embedder: Embedding extractor.
        reference: Reference embedding store.
        similarity: Threshold engine.
        enrollment: Future of the reference enrollment, if started.
    """

    config: AuthConfig
    detector: FaceDetector
    normalizer: ImageNormalizer
    embedder: FaceEmbedder
    reference: ReferenceStore
    similarity: SimilarityEngine
    enrollment: Optional["Future[np.ndarray]"] = None

    @property
    def engine_lock(self) -> threading.Lock:
        """Lock serializing every detector and embedder call of the session."""
        return self.reference.engine_lock

    def controller(self, sinks: Iterable[DecisionSink] = ()) -> StreamController:
        """Create a StreamController over this session's components."""
        return StreamController(
            detector=self.detector,
            normalizer=self.normalizer,
            embedder=self.embedder,
            reference=self.reference,
            similarity=self.similarity,
            sinks=sinks,
            run_timeout=self.config.run_timeout_s,
            engine_lock=self.engine_lock,
        )


def build_detector(paths: Paths, config: AuthConfig) -> FaceDetector:
    """Create the configured face detector.

    Raises:
        ModelLoadError: If the detector model cannot be loaded.
    """
    if config.detector_backend is DetectorBackend.SSD:
        model_path = resolve_model_paths(paths).detector(config.use_edgetpu)
        return SSDFaceDetector(
            runner=get_cached_model(model_path, use_edgetpu=config.use_edgetpu),
            threshold=config.min_detection_score,
            mode=config.detector_mode,
        )
    return HaarFaceDetector(mode=config.detector_mode)


def start_session(
    *,
    paths: Paths,
    config: AuthConfig,
    reference_image: Optional[Path] = None,
    detector: Optional[FaceDetector] = None,
    model: Optional[ModelHandle] = None,
) -> AuthSession:
    """Start a verification session.

    The embedding model is loaded and the reference image enrolled on
    background threads, so frames can be offered right away; until both
    finish the stream controller skips frames.

      1. Create (or reuse) the face detector
      2. Load the embedding model in background (unless ``model`` is given)
      3. Enroll the reference image in background once the model is ready

    Args:
        paths: Configuration paths object.
        config: Pipeline tunables.
        reference_image: Enrollment image; defaults to ``paths.reference_image``.
        detector: Detector to use instead of building one from ``config``.
        model: Embedding model handle to use instead of loading from ``paths``.

    Returns:
        AuthSession whose ``enrollment`` future tracks reference enrollment.

    Raises:
        FileNotFoundError: If the reference image does not exist.
    """
    image_path = reference_image or paths.reference_image
    if not image_path.exists():
        raise FileNotFoundError(f"Reference image not found: {image_path}")

    if detector is None:
        detector = build_detector(paths, config)

    if model is None:
        model_path = resolve_model_paths(paths).embedder(config.use_edgetpu)
        model = ModelHandle("embedder")
        model.load_async(
            lambda: get_cached_model(model_path, use_edgetpu=config.use_edgetpu)
        )

    normalizer = ImageNormalizer(tensor_size=config.tensor_size)
    embedder = FaceEmbedder(
        model,
        embedding_size=config.embedding_size,
        breaker=CircuitBreaker(
            failure_threshold=config.breaker_failures,
            recovery_timeout=config.breaker_recovery_s,
            expected_exception=InferenceError,
            name="embedder",
        ),
    )
    reference = ReferenceStore(normalizer, embedder, detector=detector)

    logger.info(f"Enrolling reference image {image_path}")
    enrollment = reference.initialize_async(image_path.read_bytes())

    return AuthSession(
        config=config,
        detector=detector,
        normalizer=normalizer,
        embedder=embedder,
        reference=reference,
        similarity=SimilarityEngine(threshold=config.threshold),
        enrollment=enrollment,
    )
