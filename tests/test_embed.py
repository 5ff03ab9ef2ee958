"""Tests for embedding extraction, model handles and the circuit breaker."""
from __future__ import annotations

import threading

import numpy as np
import pytest

from faceauth.core.circuit_breaker import CircuitBreaker, CircuitState
from faceauth.core.exceptions import (
    DegenerateEmbeddingError,
    InferenceError,
    InferenceUnavailableError,
    ModelLoadError,
    ModelNotLoadedError,
)
from faceauth.core.face_embed import FaceEmbedder, l2_normalize
from faceauth.core.model_cache import ModelHandle, get_cached_model

from conftest import EMBEDDING_SIZE, TENSOR_SIZE, FakeEngine, make_embedder


def _tensor() -> np.ndarray:
    return np.zeros((TENSOR_SIZE, TENSOR_SIZE, 3), dtype=np.float32)


class TestFaceEmbedder:
    """Tests for FaceEmbedder.extract."""

    def test_embedding_is_unit_length(self):
        """Test embeddings have unit L2 norm."""
        rng = np.random.default_rng(7)
        for _ in range(5):
            raw = rng.normal(size=EMBEDDING_SIZE) * rng.uniform(0.01, 100)
            embedding = make_embedder(FakeEngine([raw])).extract(_tensor())

            assert embedding.shape == (EMBEDDING_SIZE,)
            assert abs(float(np.linalg.norm(embedding)) - 1.0) < 1e-5

    def test_engine_receives_batched_tensor(self):
        """Test the engine gets the tensor with a batch axis."""
        engine = FakeEngine()
        make_embedder(engine).extract(_tensor())

        assert engine.inputs[0].shape == (1, TENSOR_SIZE, TENSOR_SIZE, 3)

    def test_zero_output_is_degenerate(self):
        """Test a zero engine output raises DegenerateEmbeddingError."""
        embedder = make_embedder(FakeEngine([np.zeros(EMBEDDING_SIZE)]))
        with pytest.raises(DegenerateEmbeddingError):
            embedder.extract(_tensor())

    def test_model_not_loaded(self):
        """Test extraction before the model loads raises ModelNotLoadedError."""
        embedder = FaceEmbedder(ModelHandle("embedder"), embedding_size=EMBEDDING_SIZE)
        with pytest.raises(ModelNotLoadedError):
            embedder.extract(_tensor())

    def test_tensor_shape_mismatch(self):
        """Test a tensor of the wrong size is rejected."""
        embedder = make_embedder(FakeEngine())
        with pytest.raises(InferenceError):
            embedder.extract(np.zeros((8, 8, 3), dtype=np.float32))

    def test_output_size_mismatch(self):
        """Test an output of the wrong length is rejected."""
        embedder = make_embedder(FakeEngine([np.ones(EMBEDDING_SIZE + 1)]))
        with pytest.raises(InferenceError):
            embedder.extract(_tensor())

    def test_engine_failure_is_wrapped(self):
        """Test engine exceptions are wrapped in InferenceError."""
        embedder = make_embedder(FakeEngine(fail=True))
        with pytest.raises(InferenceError) as exc_info:
            embedder.extract(_tensor())
        assert isinstance(exc_info.value.__cause__, RuntimeError)

    def test_repeated_failures_short_circuit(self):
        """Test repeated failures stop calls to the engine."""
        engine = FakeEngine(fail=True)
        breaker = CircuitBreaker(
            failure_threshold=2, recovery_timeout=60, expected_exception=InferenceError
        )
        embedder = FaceEmbedder(
            ModelHandle.of(engine), embedding_size=EMBEDDING_SIZE, breaker=breaker
        )

        for _ in range(2):
            with pytest.raises(InferenceError):
                embedder.extract(_tensor())
        with pytest.raises(InferenceUnavailableError):
            embedder.extract(_tensor())

        assert engine.calls == 2

    def test_l2_normalize_rejects_nan(self):
        """Test non-finite vectors cannot be normalized."""
        with pytest.raises(DegenerateEmbeddingError):
            l2_normalize(np.array([np.nan, 1.0]))


class TestModelHandle:
    """Tests for background model loading."""

    def test_load_async_success(self):
        """Test background loading publishes the engine."""
        engine = FakeEngine()
        handle = ModelHandle("embedder")

        handle.load_async(lambda: engine).join(5)

        assert handle.is_loaded
        assert handle.get() is engine

    def test_pending_load_raises_not_loaded(self):
        """Test a pending load reports the model as still loading."""
        gate = threading.Event()
        handle = ModelHandle("embedder")

        def loader():
            gate.wait(5)
            return FakeEngine()

        thread = handle.load_async(loader)
        try:
            with pytest.raises(ModelNotLoadedError, match="still loading"):
                handle.get()
        finally:
            gate.set()
            thread.join(5)
        assert handle.is_loaded

    def test_failed_load(self):
        """Test a failed load is reported by get."""
        def loader():
            raise ModelLoadError("corrupt model")

        handle = ModelHandle("embedder")
        handle.load_async(loader).join(5)

        assert handle.wait(1)
        assert isinstance(handle.error, ModelLoadError)
        with pytest.raises(ModelNotLoadedError, match="failed to load"):
            handle.get()

    def test_loads_only_once(self):
        """Test a handle cannot be loaded twice."""
        handle = ModelHandle("embedder")
        handle.load(FakeEngine)
        with pytest.raises(ModelLoadError):
            handle.load(FakeEngine)

    def test_never_started(self):
        """Test a handle that never started loading."""
        with pytest.raises(ModelNotLoadedError, match="never started"):
            ModelHandle("embedder").get()

    def test_cached_model_missing_file(self, tmp_path):
        """Test loading a missing model file fails."""
        with pytest.raises(ModelLoadError):
            get_cached_model(tmp_path / "missing.tflite", use_edgetpu=False)


class TestCircuitBreaker:
    """Tests for the circuit breaker state machine."""

    def _failing(self):
        raise InferenceError("boom")

    def test_opens_and_recovers(self):
        """Test the circuit opens on failures and closes after recovery."""
        now = [0.0]
        breaker = CircuitBreaker(
            failure_threshold=2,
            recovery_timeout=10.0,
            expected_exception=InferenceError,
            clock=lambda: now[0],
        )

        for _ in range(2):
            with pytest.raises(InferenceError):
                breaker.call(self._failing)
        assert breaker.state is CircuitState.OPEN

        now[0] = 5.0
        with pytest.raises(InferenceUnavailableError):
            breaker.call(lambda: 1)

        now[0] = 11.0
        assert breaker.call(lambda: 42) == 42
        assert breaker.state is CircuitState.CLOSED
        assert breaker.failure_count == 0

    def test_half_open_failure_reopens(self):
        """Test a failed trial call reopens the circuit."""
        now = [0.0]
        breaker = CircuitBreaker(
            failure_threshold=1,
            recovery_timeout=1.0,
            expected_exception=InferenceError,
            clock=lambda: now[0],
        )
        with pytest.raises(InferenceError):
            breaker.call(self._failing)

        now[0] = 2.0
        with pytest.raises(InferenceError):
            breaker.call(self._failing)

        assert breaker.state is CircuitState.OPEN
        assert breaker.opened_at == 2.0

    def test_unexpected_exceptions_do_not_count(self):
        """Test unrelated exceptions do not open the circuit."""
        breaker = CircuitBreaker(failure_threshold=1, expected_exception=InferenceError)

        def raise_value_error():
            raise ValueError("not an inference failure")

        with pytest.raises(ValueError):
            breaker.call(raise_value_error)
        assert breaker.state is CircuitState.CLOSED
