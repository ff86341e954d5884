"""
Circuit breaker guarding the oracle and the result cache.

Defaults:
- Failure threshold: 50% error rate over a 60 second window
- Open duration: 30 seconds
- Half-open: every Nth request is let through as a probe; five probes decide
  whether the circuit closes (3+ successes) or reopens
"""
import time
from collections import deque
from enum import Enum
from threading import Lock
from typing import Any, Callable, Deque, Optional, Tuple

from pathways.core.errors import PathwayError
from pathways.core.logging import get_logger

logger = get_logger(__name__)


class CircuitState(Enum):
    """Circuit breaker states."""
    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"


class CircuitBreakerOpenError(PathwayError):
    """Raised when the circuit is open and a call is rejected."""


class CircuitBreaker:
    """
    Error-rate circuit breaker for an external dependency.

    The clock is injectable so state transitions can be driven in tests
    without sleeping.
    """

    HALF_OPEN_PROBES = 5
    HALF_OPEN_SUCCESSES_TO_CLOSE = 3

    def __init__(
        self,
        name: str,
        failure_threshold: float = 0.5,
        time_window_seconds: int = 60,
        open_duration_seconds: int = 30,
        half_open_test_percentage: float = 0.1,
        min_requests_for_threshold: int = 10,
        clock: Callable[[], float] = time.monotonic,
    ):
        if not 0 < half_open_test_percentage <= 1:
            raise ValueError("half_open_test_percentage must be in (0, 1]")

        self.name = name
        self.failure_threshold = failure_threshold
        self.time_window_seconds = time_window_seconds
        self.open_duration_seconds = open_duration_seconds
        self.half_open_test_percentage = half_open_test_percentage
        self.min_requests_for_threshold = min_requests_for_threshold
        self._clock = clock

        self._state = CircuitState.CLOSED
        self._lock = Lock()
        self._outcomes: Deque[Tuple[float, bool]] = deque()
        self._opened_at: Optional[float] = None
        self._probe_counter = 0
        self._probe_successes = 0
        self._probe_failures = 0

    @property
    def state(self) -> CircuitState:
        with self._lock:
            self._refresh(self._clock())
            return self._state

    @property
    def is_open(self) -> bool:
        return self.state == CircuitState.OPEN

    def _error_rate(self) -> Tuple[int, int, float]:
        failures = sum(1 for _, ok in self._outcomes if not ok)
        total = len(self._outcomes)
        return failures, total, (failures / total if total else 0.0)

    def _trip(self, now: float) -> None:
        self._state = CircuitState.OPEN
        self._opened_at = now
        self._outcomes.clear()

    def _refresh(self, now: float) -> None:
        """Drop expired outcomes and apply time-based transitions."""
        cutoff = now - self.time_window_seconds
        while self._outcomes and self._outcomes[0][0] < cutoff:
            self._outcomes.popleft()

        if self._state == CircuitState.OPEN:
            if self._opened_at is not None and now - self._opened_at >= self.open_duration_seconds:
                self._state = CircuitState.HALF_OPEN
                self._probe_counter = 0
                self._probe_successes = 0
                self._probe_failures = 0
                logger.info("circuit_breaker_half_open", circuit_breaker=self.name)

        elif self._state == CircuitState.CLOSED:
            if len(self._outcomes) >= self.min_requests_for_threshold:
                failures, total, error_rate = self._error_rate()
                if error_rate >= self.failure_threshold:
                    self._trip(now)
                    logger.warning(
                        "circuit_breaker_opened",
                        circuit_breaker=self.name,
                        error_rate=error_rate,
                        failures=failures,
                        total=total,
                    )

    def _admit(self) -> None:
        """Raise CircuitBreakerOpenError unless this call may proceed."""
        with self._lock:
            self._refresh(self._clock())
            if self._state == CircuitState.OPEN:
                raise CircuitBreakerOpenError(
                    f"Circuit breaker {self.name} is OPEN. Service unavailable."
                )
            if self._state == CircuitState.HALF_OPEN:
                self._probe_counter += 1
                every = max(1, int(round(1 / self.half_open_test_percentage)))
                if self._probe_counter % every != 0:
                    raise CircuitBreakerOpenError(
                        f"Circuit breaker {self.name} is HALF_OPEN. Skipping request."
                    )

    def _record(self, success: bool) -> None:
        now = self._clock()
        with self._lock:
            if self._state != CircuitState.HALF_OPEN:
                self._outcomes.append((now, success))
                return

            if success:
                self._probe_successes += 1
            else:
                self._probe_failures += 1

            if self._probe_successes + self._probe_failures < self.HALF_OPEN_PROBES:
                return

            if self._probe_successes >= self.HALF_OPEN_SUCCESSES_TO_CLOSE:
                self._state = CircuitState.CLOSED
                self._opened_at = None
                logger.info(
                    "circuit_breaker_closed",
                    circuit_breaker=self.name,
                    success_count=self._probe_successes,
                    failure_count=self._probe_failures,
                )
            else:
                self._trip(now)
                logger.warning(
                    "circuit_breaker_reopened",
                    circuit_breaker=self.name,
                    success_count=self._probe_successes,
                    failure_count=self._probe_failures,
                )

    def call(self, func: Callable, *args, **kwargs) -> Any:
        """Run a sync callable under breaker protection."""
        self._admit()
        try:
            result = func(*args, **kwargs)
        except Exception:
            self._record(False)
            raise
        self._record(True)
        return result

    async def call_async(self, func: Callable, *args, **kwargs) -> Any:
        """Await a coroutine function under breaker protection."""
        self._admit()
        try:
            result = await func(*args, **kwargs)
        except Exception:
            self._record(False)
            raise
        self._record(True)
        return result

    def get_metrics(self) -> dict:
        """Snapshot of breaker state for health endpoints."""
        with self._lock:
            self._refresh(self._clock())
            failures, total, error_rate = self._error_rate()
            return {
                "name": self.name,
                "state": self._state.value,
                "recent_requests": total,
                "recent_failures": failures,
                "error_rate": error_rate,
                "opened_at": self._opened_at,
                "half_open_successes": self._probe_successes,
                "half_open_failures": self._probe_failures,
            }
