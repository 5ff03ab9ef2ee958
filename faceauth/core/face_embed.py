"""Face embedding extraction on top of a black-box inference engine."""
from __future__ import annotations

from typing import Optional

import numpy as np

from faceauth.core.circuit_breaker import CircuitBreaker
from faceauth.core.exceptions import DegenerateEmbeddingError, InferenceError
from faceauth.core.logger import get_logger
from faceauth.core.model_cache import ModelHandle
from faceauth.core.validation import validate_positive_int

logger = get_logger("face_embed")


def l2_normalize(raw: np.ndarray) -> np.ndarray:
    """Scale a vector to unit L2 norm.

    Raises:
        DegenerateEmbeddingError: If the norm is zero or not finite.
    """
    v = np.asarray(raw, dtype=np.float64).reshape(-1)
    norm = float(np.linalg.norm(v))
    if not np.isfinite(norm) or norm == 0.0:
        raise DegenerateEmbeddingError(f"Cannot normalize embedding with norm {norm}")
    return (v / norm).astype(np.float32)


class FaceEmbedder:
    """Turns normalized face tensors into unit-length embeddings.

    Attributes:
        model: Handle of the embedding engine; may still be loading.
        embedding_size: Expected embedding length E.
    """

    def __init__(
        self,
        model: ModelHandle,
        embedding_size: int = 192,
        breaker: Optional[CircuitBreaker] = None,
    ) -> None:
        validate_positive_int("embedding_size", embedding_size)
        self.model = model
        self.embedding_size = embedding_size
        self.breaker = breaker or CircuitBreaker(
            expected_exception=InferenceError, name="embedder"
        )

    def _run(self, engine, batch: np.ndarray) -> np.ndarray:
        try:
            return np.asarray(engine.invoke(batch))
        except Exception as e:
            logger.debug(f"{self.model.name} invoke failed: {type(e).__name__}: {e}")
            raise InferenceError(f"Embedding inference failed: {e}") from e

    def extract(self, tensor: np.ndarray) -> np.ndarray:
        """Generate a unit-length embedding from a normalized face tensor.

        Args:
            tensor: Face tensor with shape (T, T, 3), float32.

        Returns:
            Embedding with shape (E,), float32, L2 norm 1.

        Raises:
            ModelNotLoadedError: If the engine is not loaded.
            InferenceError: If inference fails or the output has the wrong size.
            InferenceUnavailableError: If inference keeps failing.
            DegenerateEmbeddingError: If the raw output has zero norm.
        """
        engine = self.model.get()

        expected = tuple(engine.input_shape[1:])
        if tensor.shape != expected:
            raise InferenceError(
                f"Tensor shape {tensor.shape} does not match model input {expected}"
            )

        batch = tensor.reshape((1,) + tensor.shape).astype(np.float32)
        raw = self.breaker.call(self._run, engine, batch)

        if raw.size != self.embedding_size:
            raise InferenceError(
                f"Model produced {raw.size} values, expected {self.embedding_size}"
            )

        return l2_normalize(raw)
