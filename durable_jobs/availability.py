"""Availability probing for the jobs table."""

import logging
import time
from typing import Any, Callable, Optional

from durable_jobs.store import JobStore, is_missing_relation_error

Clock = Callable[[], float]


class TTLCache:
    """Holds a single value for a fixed time-to-live."""

    def __init__(self, ttl_seconds: float, clock: Clock = time.monotonic):
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        self._value: Any = None
        self._stored_at: Optional[float] = None

    def get(self) -> Any:
        """Return the cached value, or None when empty or expired."""
        if self._stored_at is None:
            return None
        if self._clock() - self._stored_at >= self.ttl_seconds:
            return None
        return self._value

    def set(self, value: Any) -> None:
        self._value = value
        self._stored_at = self._clock()

    def invalidate(self) -> None:
        self._value = None
        self._stored_at = None


class CircuitBreaker:
    """
    Counts transient store failures that were papered over as "available".

    The breaker never blocks calls. It opens after ``threshold`` consecutive
    failures so operators can see that the optimistic fallback is hiding an
    outage, and closes again on the next successful store call.
    """

    CLOSED = "closed"
    OPEN = "open"

    def __init__(self, threshold: int = 5, logger: Optional[logging.Logger] = None):
        self.threshold = max(1, threshold)
        self.logger = logger or logging.getLogger(__name__)
        self.failure_count = 0
        self.consecutive_failures = 0
        self.last_error: Optional[str] = None
        self.state = self.CLOSED

    @property
    def is_open(self) -> bool:
        return self.state == self.OPEN

    def record_failure(self, error: BaseException) -> None:
        self.failure_count += 1
        self.consecutive_failures += 1
        self.last_error = str(error) or type(error).__name__
        if self.state == self.CLOSED and self.consecutive_failures >= self.threshold:
            self.state = self.OPEN
            self.logger.error(
                f"Job store circuit breaker opened after {self.consecutive_failures} "
                f"consecutive transient failures (last: {self.last_error})"
            )

    def record_success(self) -> None:
        if self.state == self.OPEN:
            self.logger.info("Job store circuit breaker closed")
        self.consecutive_failures = 0
        self.state = self.CLOSED

    def snapshot(self) -> dict:
        return {
            "state": self.state,
            "failure_count": self.failure_count,
            "consecutive_failures": self.consecutive_failures,
            "threshold": self.threshold,
            "last_error": self.last_error,
        }


class AvailabilityProbe:
    """Determines, and caches, whether the jobs table exists."""

    def __init__(
        self,
        store: JobStore,
        cache: TTLCache,
        breaker: CircuitBreaker,
        logger: Optional[logging.Logger] = None,
    ):
        self.store = store
        self.cache = cache
        self.breaker = breaker
        self.logger = logger or logging.getLogger(__name__)

    async def available(self, force: bool = False) -> bool:
        if not force:
            cached = self.cache.get()
            if cached is not None:
                return cached

        try:
            await self.store.probe()
        except Exception as e:
            if is_missing_relation_error(e):
                self.logger.warning(
                    f"Jobs table {self.store.table} does not exist, queue disabled"
                )
                self.cache.set(False)
                return False
            self.logger.warning(
                f"Jobs table availability check failed, assuming available: {e}"
            )
            self.breaker.record_failure(e)
            self.cache.set(True)
            return True

        self.breaker.record_success()
        self.cache.set(True)
        return True

    def mark_unavailable(self) -> None:
        """Record a missing-table error seen outside the probe."""
        self.cache.set(False)
