"""In-memory sliding-window limiter."""

from __future__ import annotations

import threading
import time
from collections import deque
from dataclasses import dataclass
from typing import Callable, Deque, Dict

# allow() calls between two passes over idle keys
SWEEP_EVERY = 1024


@dataclass
class _Bucket:
    window: float
    timestamps: Deque[float]


class SlidingWindowLimiter:
    """
    Per-key sliding window counter suitable for single-node deployments.

    Used both for request throttling (login, refresh, taps) and, with a limit
    of one, as a short-lived "seen recently" check for audit de-duplication.
    Keys whose last hit fell out of their window are evicted every
    ``sweep_every`` calls, so the key map stays bounded by recent traffic.
    """

    def __init__(self, clock: Callable[[], float] = time.monotonic, sweep_every: int = SWEEP_EVERY) -> None:
        self._clock = clock
        self._lock = threading.Lock()
        self._buckets: Dict[str, _Bucket] = {}
        self._sweep_every = max(1, sweep_every)
        self._calls = 0

    def _prune(self, key: str, window_seconds: float) -> _Bucket:
        cutoff = self._clock() - window_seconds
        bucket = self._buckets.get(key)
        if bucket is None:
            bucket = self._buckets[key] = _Bucket(window=window_seconds, timestamps=deque())
        bucket.window = window_seconds
        while bucket.timestamps and bucket.timestamps[0] <= cutoff:
            bucket.timestamps.popleft()
        return bucket

    def _drop_idle(self) -> int:
        now = self._clock()
        idle = [
            key for key, bucket in self._buckets.items()
            if not bucket.timestamps or bucket.timestamps[-1] <= now - bucket.window
        ]
        for key in idle:
            del self._buckets[key]
        return len(idle)

    def allow(self, key: str, limit: int, window_seconds: float) -> bool:
        with self._lock:
            self._calls += 1
            if self._calls % self._sweep_every == 0:
                self._drop_idle()

            bucket = self._prune(key, window_seconds)
            if len(bucket.timestamps) >= limit:
                return False
            bucket.timestamps.append(self._clock())
            return True

    def forget(self, key: str) -> None:
        with self._lock:
            self._buckets.pop(key, None)

    def __len__(self) -> int:
        with self._lock:
            return len(self._buckets)


rate_limiter = SlidingWindowLimiter()
