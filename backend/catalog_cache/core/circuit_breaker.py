"""
Circuit breaker guarding the cache store.

The cache is an optimization, so a struggling store should be skipped
quickly instead of adding a timeout to every request:
- Opens at a 50% error rate over a 60 second window (min 10 calls)
- Stays open for 30 seconds
- Half-open: lets 1 in every 10 calls through as a probe; 3 successful
  probes close the circuit, any failed probe reopens it
"""
import time
from collections import deque
from enum import Enum
from threading import Lock
from typing import Any, Awaitable, Callable, Deque, Optional, Tuple

from catalog_cache.core.logging import get_logger

logger = get_logger(__name__)


class CircuitState(Enum):
    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"


class CircuitBreakerOpenError(Exception):
    """Raised when the circuit rejects a call without executing it."""
    pass


class CircuitBreaker:
    """Error-rate circuit breaker for async calls."""

    def __init__(
        self,
        name: str,
        failure_threshold: float = 0.5,
        time_window_seconds: int = 60,
        open_duration_seconds: int = 30,
        half_open_probe_every: int = 10,
        half_open_successes_to_close: int = 3,
        min_requests_for_threshold: int = 10,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.name = name
        self.failure_threshold = failure_threshold
        self.time_window_seconds = time_window_seconds
        self.open_duration_seconds = open_duration_seconds
        self.half_open_probe_every = max(1, half_open_probe_every)
        self.half_open_successes_to_close = half_open_successes_to_close
        self.min_requests_for_threshold = min_requests_for_threshold
        self._clock = clock

        self._state = CircuitState.CLOSED
        self._lock = Lock()
        self._history: Deque[Tuple[float, bool]] = deque()
        self._opened_at: Optional[float] = None
        self._half_open_calls = 0
        self._half_open_successes = 0

    @property
    def state(self) -> CircuitState:
        with self._lock:
            self._refresh(self._clock())
            return self._state

    def _refresh(self, now: float) -> None:
        cutoff = now - self.time_window_seconds
        while self._history and self._history[0][0] < cutoff:
            self._history.popleft()

        if self._state == CircuitState.OPEN and self._opened_at is not None:
            if now - self._opened_at >= self.open_duration_seconds:
                self._state = CircuitState.HALF_OPEN
                self._half_open_calls = 0
                self._half_open_successes = 0
                logger.info("circuit_breaker_half_open", circuit_breaker=self.name)

    def _open(self, now: float, **fields: Any) -> None:
        self._state = CircuitState.OPEN
        self._opened_at = now
        self._history.clear()
        logger.warning("circuit_breaker_opened", circuit_breaker=self.name, **fields)

    def _admit(self) -> None:
        """Raise CircuitBreakerOpenError unless this call may proceed."""
        with self._lock:
            now = self._clock()
            self._refresh(now)
            if self._state == CircuitState.OPEN:
                raise CircuitBreakerOpenError(f"Circuit breaker {self.name} is OPEN")
            if self._state == CircuitState.HALF_OPEN:
                self._half_open_calls += 1
                if self._half_open_calls % self.half_open_probe_every != 0:
                    raise CircuitBreakerOpenError(
                        f"Circuit breaker {self.name} is HALF_OPEN, call not selected as probe"
                    )

    def record_success(self) -> None:
        with self._lock:
            now = self._clock()
            if self._state == CircuitState.HALF_OPEN:
                self._half_open_successes += 1
                if self._half_open_successes >= self.half_open_successes_to_close:
                    self._state = CircuitState.CLOSED
                    self._opened_at = None
                    self._history.clear()
                    logger.info("circuit_breaker_closed", circuit_breaker=self.name)
                return
            self._history.append((now, True))

    def record_failure(self) -> None:
        with self._lock:
            now = self._clock()
            if self._state == CircuitState.HALF_OPEN:
                self._open(now, reason="half_open_probe_failed")
                return
            self._history.append((now, False))
            self._refresh(now)
            total = len(self._history)
            if total >= self.min_requests_for_threshold:
                failures = sum(1 for _, ok in self._history if not ok)
                error_rate = failures / total
                if error_rate >= self.failure_threshold:
                    self._open(now, error_rate=error_rate, failures=failures, total=total)

    async def call_async(self, func: Callable[..., Awaitable[Any]], *args, **kwargs) -> Any:
        """
        Execute an async callable under circuit protection.

        Raises:
            CircuitBreakerOpenError: if the call is rejected
        """
        self._admit()
        try:
            result = await func(*args, **kwargs)
        except Exception:
            self.record_failure()
            raise
        self.record_success()
        return result

    def get_metrics(self) -> dict:
        """Snapshot for health checks."""
        with self._lock:
            now = self._clock()
            self._refresh(now)
            failures = sum(1 for _, ok in self._history if not ok)
            total = len(self._history)
            return {
                "name": self.name,
                "state": self._state.value,
                "recent_requests": total,
                "recent_failures": failures,
                "error_rate": failures / total if total else 0.0,
                "half_open_successes": self._half_open_successes,
            }
