"""
In-process request throttling for the qrtrace HTTP endpoints.

Limits are per worker process; run behind a shared limiter (gateway, proxy)
when several processes serve the same clients.
"""

import threading
import time
from collections import deque
from dataclasses import dataclass
from typing import Callable, Deque, Dict, Optional


@dataclass
class RateLimitResult:
    allowed: bool
    remaining: int
    # seconds until the oldest hit leaves the window; set only when refused
    retry_after: Optional[float] = None


class RateLimiter:
    """
    Sliding-window limiter: at most `rpm` hits per key within any
    `window_seconds` span. One deque of hit times per key, guarded by a lock.

    Keys whose hits have all left the window are dropped, at most once per
    window, so the map stays bounded by the clients seen in the last window.
    """

    def __init__(self, rpm: int, window_seconds: int = 60, clock: Optional[Callable[[], float]] = None):
        self._limit = max(1, rpm)
        self._window = window_seconds
        self._clock = clock or time.monotonic
        self._hits: Dict[str, Deque[float]] = {}
        self._lock = threading.Lock()
        self._last_sweep = self._clock()

    def allow(self, key: str) -> bool:
        return self.check(key).allowed

    def check(self, key: str) -> RateLimitResult:
        """Count a hit for `key` unless the window is already full."""
        now = self._clock()
        with self._lock:
            if now - self._last_sweep >= self._window:
                self._drop_idle(now)

            hits = self._hits.get(key)
            if hits is None:
                hits = self._hits[key] = deque()
            self._prune(hits, now)

            if len(hits) < self._limit:
                hits.append(now)
                return RateLimitResult(allowed=True, remaining=self._limit - len(hits))

            wait = hits[0] + self._window - now
            return RateLimitResult(allowed=False, remaining=0, retry_after=max(0.0, wait))

    def _prune(self, hits: Deque[float], now: float) -> None:
        while hits and hits[0] <= now - self._window:
            hits.popleft()

    def _drop_idle(self, now: float) -> None:
        idle = []
        for key, hits in self._hits.items():
            self._prune(hits, now)
            if not hits:
                idle.append(key)
        for key in idle:
            del self._hits[key]
        self._last_sweep = now

    def reset(self, key: Optional[str] = None) -> None:
        """Forget one key's hits, or every key's when `key` is None."""
        with self._lock:
            if key is None:
                self._hits.clear()
            else:
                self._hits.pop(key, None)


def client_key(headers, fallback: str = "anonymous") -> str:
    """First X-Forwarded-For hop when present, else `fallback`."""
    forwarded = headers.get("x-forwarded-for", "")
    first_hop = forwarded.split(",")[0].strip()
    return f"ip:{first_hop}" if first_hop else fallback
