"""Circuit breaker that stops calling an inference backend that keeps failing."""

from __future__ import annotations

import threading
import time
from enum import Enum
from typing import Any, Callable, TypeVar

from faceauth.core.exceptions import InferenceUnavailableError
from faceauth.core.logger import get_logger

logger = get_logger("circuit_breaker")

T = TypeVar("T")


class CircuitState(Enum):
    """Circuit breaker states."""

    CLOSED = "closed"  # Normal operation
    OPEN = "open"  # Failing, reject calls
    HALF_OPEN = "half_open"  # Letting one call through to test recovery


class CircuitBreaker:
    """Fail fast once a call has failed ``failure_threshold`` times in a row.

    While open, :meth:`call` raises :class:`InferenceUnavailableError`
    without touching the backend. After ``recovery_timeout`` seconds one
    trial call is allowed; success closes the circuit, failure reopens it.
    """

    def __init__(
        self,
        failure_threshold: int = 5,
        recovery_timeout: float = 30.0,
        expected_exception: type[Exception] | tuple[type[Exception], ...] = Exception,
        name: str = "inference",
        clock: Callable[[], float] = time.monotonic,
    ):
        """Initialize circuit breaker.

        Args:
            failure_threshold: Consecutive failures before opening the circuit.
            recovery_timeout: Seconds to wait before a half-open trial call.
            expected_exception: Exception types that count as failures.
            name: Name used in log messages.
            clock: Monotonic time source.
        """
        self.failure_threshold = failure_threshold
        self.recovery_timeout = recovery_timeout
        self.expected_exception = expected_exception
        self.name = name
        self._clock = clock

        self._lock = threading.Lock()
        self.state = CircuitState.CLOSED
        self.failure_count = 0
        self.opened_at: float | None = None

    def call(self, func: Callable[..., T], *args: Any, **kwargs: Any) -> T:
        """Execute function with circuit breaker protection.

        Raises:
            InferenceUnavailableError: If the circuit is open.
            Exception: Any exception raised by the function.
        """
        with self._lock:
            if self.state == CircuitState.OPEN:
                if self._clock() - (self.opened_at or 0.0) < self.recovery_timeout:
                    raise InferenceUnavailableError(
                        f"{self.name} disabled after {self.failure_count} failures, "
                        f"retrying in {self.recovery_timeout}s"
                    )
                self.state = CircuitState.HALF_OPEN
                logger.info(f"{self.name} circuit HALF_OPEN, probing backend")

        try:
            result = func(*args, **kwargs)
        except self.expected_exception:
            self._on_failure()
            raise
        self._on_success()
        return result

    def _on_success(self) -> None:
        with self._lock:
            if self.state == CircuitState.HALF_OPEN:
                logger.info(f"{self.name} circuit CLOSED after successful trial call")
            self.state = CircuitState.CLOSED
            self.failure_count = 0
            self.opened_at = None

    def _on_failure(self) -> None:
        with self._lock:
            self.failure_count += 1
            if (
                self.state == CircuitState.HALF_OPEN
                or self.failure_count >= self.failure_threshold
            ):
                if self.state != CircuitState.OPEN:
                    logger.warning(
                        f"{self.name} circuit OPEN after {self.failure_count} failures"
                    )
                self.state = CircuitState.OPEN
                self.opened_at = self._clock()

    def reset(self) -> None:
        """Manually reset circuit breaker to closed state."""
        with self._lock:
            self.state = CircuitState.CLOSED
            self.failure_count = 0
            self.opened_at = None
        logger.info(f"{self.name} circuit manually reset")
