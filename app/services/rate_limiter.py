"""
Vocab Tutor — Rate Limiter
Fixed-window counters keyed by any string (ip, session, action).

In-memory only:
- a restart forgets every bucket
- each server process keeps its own buckets
Limits are a soft defense, not a quota.
"""

import threading
import time
from dataclasses import dataclass, field
from typing import Optional


@dataclass
class _Bucket:
    window_start: float
    count: int = 0
    lock: threading.Lock = field(default_factory=threading.Lock, repr=False)


class RateLimiter:
    """
    Thread-safe fixed-window limiter.

    The map lock is held only to find or create a bucket; counting happens
    under the bucket's own lock, so unrelated keys never wait on each other.
    Two callers racing across a window rollover may both reset the window.
    """

    def __init__(self):
        self._buckets: dict[str, _Bucket] = {}
        self._lock = threading.Lock()

    def allow(self, key: str, limit: int, window: float, now: Optional[float] = None) -> bool:
        """
        Count one request against `key`.

        Returns False once `limit` requests have been allowed inside the
        current window of `window` seconds.
        """
        now = time.time() if now is None else now

        with self._lock:
            bucket = self._buckets.get(key)
            if bucket is None:
                bucket = _Bucket(window_start=now)
                self._buckets[key] = bucket

        with bucket.lock:
            if now - bucket.window_start >= window:
                bucket.window_start = now
                bucket.count = 0
            if bucket.count >= limit:
                return False
            bucket.count += 1
            return True
