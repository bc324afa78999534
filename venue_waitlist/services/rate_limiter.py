"""In-process token bucket used to throttle outbound notifications."""

from __future__ import annotations

import time
from threading import Lock
from typing import Callable


class TokenBucketRateLimiter:
    """Thread-safe token bucket.

    The bucket starts full with ``capacity`` tokens and regains
    ``refill_per_second`` tokens per second of ``clock`` time, never exceeding
    ``capacity``.
    """

    def __init__(
        self,
        capacity: int,
        refill_per_second: float,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        if capacity <= 0:
            raise ValueError("capacity must be > 0")
        if refill_per_second < 0:
            raise ValueError("refill_per_second must be >= 0")
        self._capacity = float(capacity)
        self._refill_per_second = float(refill_per_second)
        self._clock = clock
        self._tokens = float(capacity)
        self._updated_at = clock()
        self._lock = Lock()

    def _refill(self) -> None:
        now = self._clock()
        elapsed = max(now - self._updated_at, 0.0)
        self._tokens = min(self._capacity, self._tokens + elapsed * self._refill_per_second)
        self._updated_at = now

    def try_acquire(self, tokens: int = 1) -> bool:
        if tokens <= 0:
            raise ValueError("tokens must be > 0")
        with self._lock:
            self._refill()
            if self._tokens < tokens:
                return False
            self._tokens -= tokens
            return True

    @property
    def available_tokens(self) -> float:
        with self._lock:
            self._refill()
            return self._tokens
