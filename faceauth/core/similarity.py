"""Embedding comparison using cosine distance."""
from __future__ import annotations

from typing import Optional

import numpy as np

from faceauth.core.types import AuthDecision
from faceauth.core.validation import validate_threshold


def cosine_distance(a: np.ndarray, b: np.ndarray) -> float:
    """Calculate cosine distance ``1 - a.b / (|a| |b|)`` between two vectors.

    Args:
        a: First vector.
        b: Second vector of the same length.

    Returns:
        Distance in [0, 2]; 1.0 if either vector has zero norm.
    """
    a = np.asarray(a, dtype=np.float64).reshape(-1)
    b = np.asarray(b, dtype=np.float64).reshape(-1)
    if a.shape != b.shape:
        raise ValueError(f"Embedding lengths differ: {a.size} vs {b.size}")

    denom = float(np.linalg.norm(a)) * float(np.linalg.norm(b))
    if denom == 0.0:
        return 1.0
    cos = float(np.dot(a, b)) / denom
    return float(np.clip(1.0 - cos, 0.0, 2.0))


class SimilarityEngine:
    """Applies a distance threshold to embedding pairs.

    Attributes:
        threshold: Default cosine distance below which faces match.
    """

    def __init__(self, threshold: float = 0.4) -> None:
        validate_threshold(threshold)
        self.threshold = float(threshold)

    def compare(
        self, a: np.ndarray, b: np.ndarray, threshold: Optional[float] = None
    ) -> AuthDecision:
        """Compare two embeddings.

        Args:
            a: Reference embedding.
            b: Live embedding.
            threshold: Overrides the engine's default threshold.

        Returns:
            AuthDecision with ``authorized = distance < threshold``.
        """
        if threshold is None:
            threshold = self.threshold
        else:
            validate_threshold(threshold)

        distance = cosine_distance(a, b)
        return AuthDecision(
            distance=distance,
            authorized=distance < threshold,
            threshold=float(threshold),
        )
