"""
Fixed-window rate limiting kept in process memory.

Counters live in a ``limits`` ``MemoryStorage`` owned by each ``RateLimiter``
instance, so they are not shared between processes or instances: this damps
abuse on a single instance rather than enforcing a global quota. Pointing the
strategy at a shared ``limits`` storage would change that without touching
callers of ``check``.
"""
import math
import threading
import time
from collections import OrderedDict
from dataclasses import dataclass

from limits import RateLimitItem, RateLimitItemPerSecond
from limits.storage import MemoryStorage
from limits.strategies import FixedWindowRateLimiter


@dataclass(frozen=True)
class RateLimitResult:
    allowed: bool
    remaining: int = 0
    retry_after_ms: int = 0


def _window_item(limit: int, window_ms: int) -> RateLimitItem:
    # limits counts windows in whole seconds
    return RateLimitItemPerSecond(limit, max(1, math.ceil(window_ms / 1000)))


class RateLimiter:
    def __init__(self, max_keys: int = 10_000):
        self._max_keys = max_keys
        self._storage = MemoryStorage()
        self._strategy = FixedWindowRateLimiter(self._storage)
        # Tracked keys, least recently used first
        self._keys: OrderedDict[str, RateLimitItem] = OrderedDict()
        self._lock = threading.Lock()

    def check(self, key: str, limit: int, window_ms: int) -> RateLimitResult:
        item = _window_item(limit, window_ms)
        with self._lock:
            self._track(key, item)
            allowed = self._strategy.hit(item, key)
            stats = self._strategy.get_window_stats(item, key)

        if allowed:
            return RateLimitResult(allowed=True, remaining=stats.remaining)
        retry_after_ms = max(1, round((stats.reset_time - time.time()) * 1000))
        return RateLimitResult(allowed=False, retry_after_ms=retry_after_ms)

    def _track(self, key: str, item: RateLimitItem) -> None:
        previous = self._keys.pop(key, None)
        if previous is not None and previous != item:
            self._strategy.clear(previous, key)
        self._keys[key] = item
        while len(self._keys) > self._max_keys:
            oldest, oldest_item = self._keys.popitem(last=False)
            self._strategy.clear(oldest_item, oldest)

    @property
    def tracked_keys(self) -> int:
        return len(self._keys)

    def reset(self) -> None:
        with self._lock:
            self._storage.reset()
            self._keys.clear()
