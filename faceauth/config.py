"""Configuration paths, tunables and model resolution for faceauth."""
from __future__ import annotations

import os
from dataclasses import dataclass
from enum import Enum
from pathlib import Path

from faceauth.core.validation import (
    validate_positive_int,
    validate_score,
    validate_threshold,
    validate_timeout,
)


class DetectorMode(Enum):
    """Face detector speed/quality trade-off."""

    FAST = "fast"
    ACCURATE = "accurate"


class DetectorBackend(Enum):
    """Which face detector implementation to use."""

    HAAR = "haar"  # OpenCV cascade, no model file needed
    SSD = "ssd"  # TFLite SSD MobileNet face model


@dataclass(frozen=True)
class Paths:
    """Configuration paths for data directory structure.

    Attributes:
        data_dir: Root data directory containing models and the reference image.
    """

    data_dir: Path

    @property
    def models_dir(self) -> Path:
        """Return path to models directory."""
        return self.data_dir / "models"

    @property
    def reference_image(self) -> Path:
        """Return path to the bundled enrollment image."""
        return self.data_dir / "reference.jpg"


@dataclass(frozen=True)
class ModelPaths:
    """Paths to TFLite models for CPU and Edge TPU inference.

    Attributes:
        detector_cpu: Path to CPU face detection model.
        detector_edgetpu: Path to Edge TPU face detection model.
        embedder_cpu: Path to CPU face embedding model.
        embedder_edgetpu: Path to Edge TPU face embedding model.
    """

    detector_cpu: Path
    detector_edgetpu: Path
    embedder_cpu: Path
    embedder_edgetpu: Path

    def detector(self, use_edgetpu: bool) -> Path:
        return self.detector_edgetpu if use_edgetpu else self.detector_cpu

    def embedder(self, use_edgetpu: bool) -> Path:
        return self.embedder_edgetpu if use_edgetpu else self.embedder_cpu


@dataclass(frozen=True)
class AuthConfig:
    """Tunables of the verification pipeline.

    Attributes:
        tensor_size: Edge length T of the square embedder input.
        embedding_size: Length E of the embedding vector.
        threshold: Cosine distance below which a face is authorized.
        detector_mode: Detector speed/quality trade-off.
        detector_backend: Detector implementation.
        min_detection_score: Minimum detector confidence for a face.
        run_timeout_s: Wall-clock budget of one pipeline run.
        use_edgetpu: Whether to run models on the Edge TPU.
        breaker_failures: Consecutive inference failures before failing fast.
        breaker_recovery_s: Seconds before inference is retried after that.
    """

    tensor_size: int = 160
    embedding_size: int = 192
    threshold: float = 0.4
    detector_mode: DetectorMode = DetectorMode.FAST
    detector_backend: DetectorBackend = DetectorBackend.HAAR
    min_detection_score: float = 0.5
    run_timeout_s: float = 5.0
    use_edgetpu: bool = False
    breaker_failures: int = 5
    breaker_recovery_s: float = 30.0

    def __post_init__(self) -> None:
        validate_positive_int("tensor_size", self.tensor_size)
        validate_positive_int("embedding_size", self.embedding_size)
        validate_threshold(self.threshold)
        validate_score(self.min_detection_score)
        validate_timeout(self.run_timeout_s)
        validate_positive_int("breaker_failures", self.breaker_failures)
        validate_timeout(self.breaker_recovery_s)


def get_data_dir_from_env(default: str = "./data") -> Path:
    """Get data directory path from environment variable.

    Args:
        default: Default path if DATA_DIR is not set.

    Returns:
        Path to data directory.
    """
    return Path(os.getenv("DATA_DIR", default))


def _env_bool(value: str) -> bool:
    return value.strip().lower() in {"1", "true", "yes", "on"}


def load_auth_config_from_env(**overrides) -> AuthConfig:
    """Build an AuthConfig from ``FACEAUTH_*`` environment variables.

    Keyword overrides win over the environment; ``None`` overrides are
    ignored so CLI options can be passed through unconditionally.

    Raises:
        ValidationError: If a value is out of range.
        ValueError: If a value cannot be parsed.
    """
    env = os.environ
    values: dict[str, object] = {}
    if "FACEAUTH_TENSOR_SIZE" in env:
        values["tensor_size"] = int(env["FACEAUTH_TENSOR_SIZE"])
    if "FACEAUTH_EMBEDDING_SIZE" in env:
        values["embedding_size"] = int(env["FACEAUTH_EMBEDDING_SIZE"])
    if "FACEAUTH_THRESHOLD" in env:
        values["threshold"] = float(env["FACEAUTH_THRESHOLD"])
    if "FACEAUTH_DETECTOR_MODE" in env:
        values["detector_mode"] = DetectorMode(env["FACEAUTH_DETECTOR_MODE"].lower())
    if "FACEAUTH_DETECTOR" in env:
        values["detector_backend"] = DetectorBackend(env["FACEAUTH_DETECTOR"].lower())
    if "FACEAUTH_MIN_SCORE" in env:
        values["min_detection_score"] = float(env["FACEAUTH_MIN_SCORE"])
    if "FACEAUTH_RUN_TIMEOUT" in env:
        values["run_timeout_s"] = float(env["FACEAUTH_RUN_TIMEOUT"])
    if "FACEAUTH_USE_EDGETPU" in env:
        values["use_edgetpu"] = _env_bool(env["FACEAUTH_USE_EDGETPU"])

    values.update({k: v for k, v in overrides.items() if v is not None})
    return AuthConfig(**values)


def resolve_model_paths(paths: Paths) -> ModelPaths:
    """Resolve model file paths from data directory.

    Args:
        paths: Configuration paths object.

    Returns:
        ModelPaths object with resolved paths to all model files.
    """
    return ModelPaths(
        detector_cpu=paths.models_dir
        / "ssd_mobilenet_v2_face_quant_postprocess.tflite",
        detector_edgetpu=paths.models_dir
        / "ssd_mobilenet_v2_face_quant_postprocess_edgetpu.tflite",
        embedder_cpu=paths.models_dir / "facenet.tflite",
        embedder_edgetpu=paths.models_dir / "facenet_edgetpu.tflite",
    )
