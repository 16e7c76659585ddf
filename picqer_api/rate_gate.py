import logging
import threading
import time
from typing import Callable

logger = logging.getLogger(__name__)

SECONDS_PER_MINUTE = 60.0


class RateGate:
    """Serializes API calls so they never exceed ``requests_per_minute``.

    One gate is shared by every caller using the same API credential. The
    lock is held while sleeping, so concurrent callers queue up behind each
    other and consume the budget additively.
    """

    def __init__(
        self,
        requests_per_minute: int = 30,
        *,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        if requests_per_minute <= 0:
            raise ValueError("requests_per_minute must be a positive integer")

        self.requests_per_minute = requests_per_minute
        self.min_interval = SECONDS_PER_MINUTE / requests_per_minute
        self._clock = clock
        self._sleep = sleep
        self._lock = threading.Lock()
        self._next_allowed_at: float | None = None
        self.total_wait_seconds = 0.0

    def wait(self) -> float:
        with self._lock:
            current_time = self._clock()
            delay = 0.0
            if self._next_allowed_at is not None:
                delay = max(0.0, self._next_allowed_at - current_time)

            if delay > 0:
                logger.debug("Rate gate sleeping %.3fs before next request", delay)
                self._sleep(delay)
                self.total_wait_seconds += delay

            self._next_allowed_at = current_time + delay + self.min_interval
            return delay

    def defer(self, seconds: float) -> None:
        """Push the next free slot at least ``seconds`` into the future."""

        with self._lock:
            deferred_until = self._clock() + seconds
            if self._next_allowed_at is None or self._next_allowed_at < deferred_until:
                self._next_allowed_at = deferred_until
