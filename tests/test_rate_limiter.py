"""
Tests for the fixed-window rate limiter.
"""

import threading

from app.services.rate_limiter import RateLimiter


class TestRateLimiter:
    def test_limit_then_deny(self):
        rl = RateLimiter()
        results = [rl.allow("k", 3, 60, now=1000.0) for _ in range(4)]
        assert results == [True, True, True, False]

    def test_window_rollover_resets(self):
        rl = RateLimiter()
        for _ in range(3):
            rl.allow("k", 3, 60, now=1000.0)
        assert rl.allow("k", 3, 60, now=1059.9) is False
        assert rl.allow("k", 3, 60, now=1060.0) is True

    def test_keys_are_independent(self):
        rl = RateLimiter()
        assert rl.allow("a", 1, 60, now=0.0) is True
        assert rl.allow("a", 1, 60, now=0.0) is False
        assert rl.allow("b", 1, 60, now=0.0) is True

    def test_concurrent_callers_never_exceed_limit(self):
        rl = RateLimiter()
        allowed = []
        lock = threading.Lock()

        def worker():
            for _ in range(50):
                ok = rl.allow("shared", 100, 60, now=5.0)
                with lock:
                    allowed.append(ok)

        threads = [threading.Thread(target=worker) for _ in range(8)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert sum(allowed) == 100
        assert len(allowed) == 400
