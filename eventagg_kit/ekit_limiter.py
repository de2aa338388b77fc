import time
import logging
from collections import defaultdict
from typing import Callable, Dict, List


logger = logging.getLogger("limiter")


class TokenBucketLimiter:
    """
    Per-key token bucket: `capacity` tokens, refilled continuously so that a
    full bucket regenerates over `period_seconds`. Used for "N per day" caps.
    """

    def __init__(self, name: str, capacity: int, period_seconds: float, clock: Callable[[], float] = time.monotonic):
        assert capacity > 0 and period_seconds > 0
        self.name = name
        self.capacity = capacity
        self.refill_per_second = capacity / period_seconds
        self._clock = clock
        self._tokens: Dict[str, float] = {}
        self._last: Dict[str, float] = {}

    def _refill(self, key: str) -> float:
        now = self._clock()
        if key not in self._tokens:
            self._tokens[key] = float(self.capacity)
        else:
            elapsed = now - self._last[key]
            self._tokens[key] = min(float(self.capacity), self._tokens[key] + elapsed * self.refill_per_second)
        self._last[key] = now
        return self._tokens[key]

    def check(self, key: str) -> bool:
        if self._refill(key) < 1.0:
            logger.debug("rate limit %s exceeded for %s", self.name, key)
            return False
        self._tokens[key] -= 1.0
        return True


class SlidingWindowLimiter:
    """
    Per-key sliding window: at most `max_requests` accepted within any
    `window_seconds` span.
    """

    def __init__(self, name: str, max_requests: int, window_seconds: float, clock: Callable[[], float] = time.monotonic):
        assert max_requests > 0 and window_seconds > 0
        self.name = name
        self.max_requests = max_requests
        self.window_seconds = window_seconds
        self._clock = clock
        self._requests: Dict[str, List[float]] = defaultdict(list)

    def _prune(self, key: str, now: float) -> List[float]:
        window_start = now - self.window_seconds
        reqs = [t for t in self._requests.get(key, []) if t > window_start]
        if reqs:
            self._requests[key] = reqs
        else:
            self._requests.pop(key, None)
        return reqs

    def check(self, key: str) -> bool:
        now = self._clock()
        reqs = self._prune(key, now)
        if len(reqs) >= self.max_requests:
            logger.debug("rate limit %s exceeded for %s: %d requests in %ss", self.name, key, len(reqs), self.window_seconds)
            return False
        self._requests[key].append(now)
        return True
