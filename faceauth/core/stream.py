"""Stream controller: admission control and orchestration of verification runs."""

from __future__ import annotations

import threading
import time
from concurrent.futures import ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeoutError
from typing import Any, Callable, Iterable, Optional, TypeVar

import numpy as np

from faceauth.core.exceptions import (
    DegenerateCropError,
    DegenerateEmbeddingError,
    FaceAuthError,
    ModelNotLoadedError,
    ReferenceNotReadyError,
    RunTimeoutError,
)
from faceauth.core.face_detect import FaceDetector
from faceauth.core.face_embed import FaceEmbedder
from faceauth.core.frame_convert import frame_to_rgb
from faceauth.core.logger import get_logger
from faceauth.core.normalize import ImageNormalizer
from faceauth.core.reference import ReferenceStore
from faceauth.core.similarity import SimilarityEngine
from faceauth.core.types import AuthDecision, AuthState, BBox, DecisionSink, RawFrame
from faceauth.core.validation import validate_timeout

logger = get_logger("stream")

T = TypeVar("T")
StateListener = Callable[[AuthState], None]

_COUNTERS = (
    "accepted",
    "dropped",
    "no_face",
    "skipped",
    "decisions",
    "authorized",
    "rejected",
    "errors",
)


class StreamController:
    """Drives frames through detect -> normalize -> embed -> compare.

    At most one run is in flight. Frames that arrive while a run is in
    progress are dropped, not queued. Each run ends in a decision, in
    silence (no face, reference not ready) or in a logged error, and the
    controller always returns to IDLE and accepts the next frame.

    Detection and inference execute on a single stage thread and hold
    ``engine_lock`` while they run. Share that lock with every other user
    of the same detector and embedder (the :class:`ReferenceStore` during
    enrollment) and the engines are never entered concurrently. Each run
    has a wall-clock budget, including the wait for the lock; a stage that
    overruns it fails the run with :class:`RunTimeoutError`. The stalled
    stage keeps the stage thread busy, so later runs queue behind it and
    time out too until the backend responds again.

    Sinks are called on the run thread before the next frame is admitted
    and are not covered by the budget, so they must return quickly.
    """

    def __init__(
        self,
        *,
        detector: FaceDetector,
        normalizer: ImageNormalizer,
        embedder: FaceEmbedder,
        reference: ReferenceStore,
        similarity: SimilarityEngine,
        sinks: Iterable[DecisionSink] = (),
        run_timeout: float = 5.0,
        engine_lock: Optional[threading.Lock] = None,
    ) -> None:
        """Initialize the controller.

        Args:
            detector: Face detector run on each accepted frame.
            normalizer: Crops and normalizes the first detected face.
            embedder: Extracts the live embedding.
            reference: Store holding the enrolled reference embedding.
            similarity: Distance threshold engine.
            sinks: Callables receiving every AuthDecision; must not block.
            run_timeout: Wall-clock budget of one run in seconds.
            engine_lock: Lock held around detection and inference; defaults
                to the reference store's lock.
        """
        validate_timeout(run_timeout)
        self.detector = detector
        self.normalizer = normalizer
        self.embedder = embedder
        self.reference = reference
        self.similarity = similarity
        self.run_timeout = float(run_timeout)
        self.engine_lock = engine_lock or reference.engine_lock

        self._sinks: list[DecisionSink] = list(sinks)
        self._state_listeners: list[StateListener] = []

        self._guard = threading.Lock()
        self._state_lock = threading.Lock()
        self._idle = threading.Event()
        self._idle.set()
        self._state = AuthState.IDLE
        self._last_decision: Optional[AuthDecision] = None
        self._counters = {name: 0 for name in _COUNTERS}
        self._model_missing_reported = False

        self._dispatcher = ThreadPoolExecutor(
            max_workers=1, thread_name_prefix="faceauth-run"
        )
        self._stages = ThreadPoolExecutor(
            max_workers=1, thread_name_prefix="faceauth-stage"
        )

    def add_sink(self, sink: DecisionSink) -> None:
        self._sinks.append(sink)

    def add_state_listener(self, listener: StateListener) -> None:
        self._state_listeners.append(listener)

    @property
    def state(self) -> AuthState:
        return self._state

    @property
    def last_decision(self) -> Optional[AuthDecision]:
        return self._last_decision

    @property
    def busy(self) -> bool:
        return not self._idle.is_set()

    @property
    def stats(self) -> dict[str, int]:
        with self._state_lock:
            return dict(self._counters)

    def submit(self, frame: RawFrame) -> bool:
        """Offer a frame from the camera producer without blocking.

        Returns:
            True if the frame was accepted and a run started in background,
            False if it was dropped because a run is in flight.
        """
        if not self._admit():
            return False
        try:
            self._dispatcher.submit(self._guarded_run, frame)
        except RuntimeError:
            self._finish_run()
            raise
        return True

    def process(self, frame: RawFrame) -> Optional[AuthDecision]:
        """Run the pipeline on ``frame`` in the calling thread.

        Returns:
            The decision, or None if the frame was dropped or the run ended
            without a decision.
        """
        if not self._admit():
            return None
        return self._guarded_run(frame)

    def wait_idle(self, timeout: Optional[float] = None) -> bool:
        """Block until no run is in flight."""
        return self._idle.wait(timeout)

    def close(self, wait: bool = True) -> None:
        """Stop accepting frames and shut down worker threads."""
        self._dispatcher.shutdown(wait=wait)
        self._stages.shutdown(wait=wait, cancel_futures=True)

    def __enter__(self) -> "StreamController":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.close()

    def _admit(self) -> bool:
        if not self._guard.acquire(blocking=False):
            with self._state_lock:
                self._counters["dropped"] += 1
            return False
        with self._state_lock:
            self._idle.clear()
            self._counters["accepted"] += 1
        return True

    def _finish_run(self) -> None:
        self._set_state(AuthState.IDLE)
        with self._state_lock:
            self._guard.release()
            self._idle.set()

    def _guarded_run(self, frame: RawFrame) -> Optional[AuthDecision]:
        try:
            return self._run(frame)
        finally:
            self._finish_run()

    def _set_state(self, state: AuthState) -> None:
        self._state = state
        for listener in self._state_listeners:
            try:
                listener(state)
            except Exception:
                logger.exception(f"State listener failed on {state.value}")

    def _count(self, name: str) -> None:
        with self._state_lock:
            self._counters[name] += 1

    def _with_engine(self, func: Callable[..., T], *args: Any) -> T:
        with self.engine_lock:
            return func(*args)

    def _await(
        self, stage: str, deadline: float, func: Callable[..., T], *args: Any
    ) -> T:
        remaining = deadline - time.monotonic()
        if remaining <= 0:
            raise RunTimeoutError(f"No time left for {stage}")
        future = self._stages.submit(self._with_engine, func, *args)
        try:
            return future.result(timeout=remaining)
        except FutureTimeoutError:
            future.cancel()
            raise RunTimeoutError(
                f"{stage} exceeded the {self.run_timeout:.1f}s run budget"
            ) from None

    def _run(self, frame: RawFrame) -> Optional[AuthDecision]:
        deadline = time.monotonic() + self.run_timeout
        self._set_state(AuthState.DETECTING)
        try:
            image = frame_to_rgb(frame)
            detections = self._await("detection", deadline, self.detector.detect, image)
            if not detections:
                self._count("no_face")
                return None
            if len(detections) > 1:
                logger.debug(f"{len(detections)} faces in frame, using the first")

            reference = self.reference.get()
            decision = self._verify(image, detections[0].bbox, reference, deadline)
        except ReferenceNotReadyError:
            logger.debug("Reference not enrolled yet, skipping frame")
            self._count("skipped")
            return None
        except ModelNotLoadedError as e:
            self._fail(e, report_once=True)
            return None
        except (DegenerateCropError, DegenerateEmbeddingError) as e:
            self._set_state(AuthState.ERROR)
            self._count("errors")
            logger.info(f"Skipping frame: {e}")
            return None
        except FaceAuthError as e:
            self._fail(e)
            return None
        except Exception as e:
            self._set_state(AuthState.ERROR)
            self._count("errors")
            logger.error(f"Unexpected error processing frame: {e}", exc_info=True)
            return None

        self._conclude(decision)
        return decision

    def _verify(
        self, image: np.ndarray, bbox: BBox, reference: np.ndarray, deadline: float
    ) -> AuthDecision:
        tensor = self.normalizer.normalize(image, bbox)
        embedding = self._await("embedding", deadline, self.embedder.extract, tensor)
        return self.similarity.compare(reference, embedding)

    def _fail(self, error: FaceAuthError, report_once: bool = False) -> None:
        self._set_state(AuthState.ERROR)
        self._count("errors")
        if report_once:
            if self._model_missing_reported:
                logger.debug(f"Skipping frame: {error}")
                return
            self._model_missing_reported = True
        logger.warning(f"Verification run failed: {error}")

    def _conclude(self, decision: AuthDecision) -> None:
        self._last_decision = decision
        with self._state_lock:
            self._counters["decisions"] += 1
            self._counters["authorized" if decision.authorized else "rejected"] += 1
        self._set_state(
            AuthState.AUTHORIZED if decision.authorized else AuthState.REJECTED
        )
        logger.info(f"{decision.label} (distance={decision.distance:.4f})")

        for sink in self._sinks:
            try:
                sink(decision)
            except Exception:
                logger.exception(f"Decision sink {sink!r} failed")
