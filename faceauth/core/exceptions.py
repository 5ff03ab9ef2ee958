"""Custom exceptions for faceauth."""

from __future__ import annotations


class FaceAuthError(Exception):
    """Base exception for all faceauth errors."""

    pass


class DegenerateCropError(FaceAuthError):
    """Face box has no area left after clamping to the frame."""

    pass


class ModelLoadError(FaceAuthError):
    """Error loading TensorFlow Lite model."""

    pass


class ModelNotLoadedError(FaceAuthError):
    """Inference engine is still loading or failed to load."""

    pass


class InferenceError(FaceAuthError):
    """Inference engine failed or returned an unexpected output."""

    pass


class DegenerateEmbeddingError(InferenceError):
    """Raw embedding has zero norm and cannot be normalized."""

    pass


class InferenceUnavailableError(InferenceError):
    """Inference is short-circuited after repeated engine failures."""

    pass


class ReferenceNotReadyError(FaceAuthError):
    """Comparison attempted before the reference embedding exists."""

    pass


class ReferenceAlreadySetError(FaceAuthError):
    """Reference embedding can only be enrolled once."""

    pass


class FrameFormatError(FaceAuthError):
    """Camera frame buffer does not match its declared layout."""

    pass


class ValidationError(FaceAuthError):
    """Input or configuration validation error."""

    pass


class RunTimeoutError(FaceAuthError):
    """Pipeline run exceeded its wall-clock budget."""

    pass
