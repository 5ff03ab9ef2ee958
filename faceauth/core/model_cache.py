"""Model loading: cached TFLite runners and background-loaded model handles."""

from __future__ import annotations

import threading
from pathlib import Path
from typing import Callable, Optional, Protocol

import numpy as np
from tenacity import retry, retry_if_exception_type, stop_after_attempt, wait_exponential

from faceauth.core.exceptions import ModelLoadError, ModelNotLoadedError
from faceauth.core.logger import get_logger
from faceauth.core.tflite import TFLiteRunner

logger = get_logger("model_cache")


class InferenceEngine(Protocol):
    """Fixed-shape inference capability, e.g. a :class:`TFLiteRunner`."""

    @property
    def input_shape(self) -> tuple[int, ...]: ...

    def invoke(self, input_float: np.ndarray) -> np.ndarray: ...


# Global model cache with thread safety
_model_cache: dict[str, TFLiteRunner] = {}
_model_lock = threading.Lock()


@retry(
    retry=retry_if_exception_type(ModelLoadError),
    stop=stop_after_attempt(3),
    wait=wait_exponential(multiplier=0.5, min=0.5, max=4),
    reraise=True,
)
def _load_runner(model_path: Path, use_edgetpu: bool) -> TFLiteRunner:
    logger.debug(f"Loading model: {model_path} (edgetpu={use_edgetpu})")
    return TFLiteRunner(model_path, use_edgetpu=use_edgetpu)


def get_cached_model(model_path: Path, use_edgetpu: bool) -> TFLiteRunner:
    """Get or create a cached TFLite model runner.

    Models are cached by path and edgetpu flag. Loading is retried a few
    times since delegate initialization on a busy accelerator can fail
    transiently.

    Args:
        model_path: Path to the TensorFlow Lite model file.
        use_edgetpu: Whether to use Edge TPU acceleration.

    Returns:
        Cached TFLiteRunner instance.

    Raises:
        ModelLoadError: If the file is missing or every load attempt failed.
    """
    if not Path(model_path).exists():
        raise ModelLoadError(f"Model not found: {model_path}")

    cache_key = f"{model_path}:{use_edgetpu}"

    with _model_lock:
        if cache_key not in _model_cache:
            _model_cache[cache_key] = _load_runner(model_path, use_edgetpu)
        else:
            logger.debug(f"Using cached model: {model_path} (edgetpu={use_edgetpu})")

        return _model_cache[cache_key]


class ModelHandle:
    """Slot for an inference engine that is loaded once, possibly in background.

    Until loading finishes (or after it failed) :meth:`get` raises
    :class:`ModelNotLoadedError`, so callers can skip work instead of
    blocking on the load.
    """

    def __init__(self, name: str = "model") -> None:
        self.name = name
        self._engine: Optional[InferenceEngine] = None
        self._error: Optional[BaseException] = None
        self._started = False
        self._lock = threading.Lock()
        self._done = threading.Event()

    @classmethod
    def of(cls, engine: InferenceEngine, name: str = "model") -> "ModelHandle":
        """Create a handle around an already loaded engine."""
        handle = cls(name)
        handle._started = True
        handle._engine = engine
        handle._done.set()
        return handle

    def _begin(self) -> None:
        with self._lock:
            if self._started:
                raise ModelLoadError(f"{self.name} load already started")
            self._started = True

    def _finish(self, loader: Callable[[], InferenceEngine]) -> None:
        try:
            engine = loader()
        except Exception as e:
            self._error = e
            logger.error(f"Failed to load {self.name}: {e}")
        else:
            self._engine = engine
            logger.info(f"{self.name} loaded")
        finally:
            self._done.set()

    def load(self, loader: Callable[[], InferenceEngine]) -> InferenceEngine:
        """Load the engine in the calling thread.

        Raises:
            ModelNotLoadedError: If the loader failed.
        """
        self._begin()
        self._finish(loader)
        return self.get()

    def load_async(self, loader: Callable[[], InferenceEngine]) -> threading.Thread:
        """Start loading the engine on a daemon thread and return the thread."""
        self._begin()
        thread = threading.Thread(
            target=self._finish,
            args=(loader,),
            name=f"load-{self.name}",
            daemon=True,
        )
        thread.start()
        return thread

    def wait(self, timeout: Optional[float] = None) -> bool:
        """Block until loading finished (successfully or not)."""
        return self._done.wait(timeout)

    @property
    def is_loaded(self) -> bool:
        return self._engine is not None

    @property
    def error(self) -> Optional[BaseException]:
        return self._error

    def get(self) -> InferenceEngine:
        """Return the loaded engine.

        Raises:
            ModelNotLoadedError: If loading is pending, failed or never started.
        """
        engine = self._engine
        if engine is not None:
            return engine
        if self._error is not None:
            raise ModelNotLoadedError(f"{self.name} failed to load: {self._error}")
        if self._started:
            raise ModelNotLoadedError(f"{self.name} is still loading")
        raise ModelNotLoadedError(f"{self.name} load was never started")
