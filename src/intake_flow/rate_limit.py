from __future__ import annotations

import threading
import time
from collections import deque
from dataclasses import dataclass
from typing import Callable, Deque, Dict, Mapping


@dataclass(frozen=True)
class RateLimitResult:
    allowed: bool
    remaining: int
    limit: int
    reset_at: float
    retry_after: float = 0.0


class SlidingWindowRateLimiter:
    """In-process sliding-window limiter keyed by caller (usually client IP).

    Good enough for a single instance; a multi-instance deployment needs a shared store.
    """

    CLEANUP_INTERVAL = 300.0

    def __init__(
        self,
        *,
        max_requests: int,
        window_seconds: float,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.max_requests = max_requests
        self.window_seconds = window_seconds
        self._clock = clock
        self._hits: Dict[str, Deque[float]] = {}
        self._lock = threading.Lock()
        self._last_cleanup = clock()

    def check(self, key: str) -> RateLimitResult:
        now = self._clock()
        cutoff = now - self.window_seconds
        with self._lock:
            self._cleanup(now, cutoff)
            hits = self._hits.setdefault(key, deque())
            while hits and hits[0] <= cutoff:
                hits.popleft()

            reset_at = (hits[0] if hits else now) + self.window_seconds
            if len(hits) >= self.max_requests:
                return RateLimitResult(False, 0, self.max_requests, reset_at, max(0.0, reset_at - now))

            hits.append(now)
            return RateLimitResult(True, self.max_requests - len(hits), self.max_requests, reset_at)

    def _cleanup(self, now: float, cutoff: float) -> None:
        if now - self._last_cleanup < self.CLEANUP_INTERVAL:
            return
        self._last_cleanup = now
        for key in list(self._hits):
            hits = self._hits[key]
            while hits and hits[0] <= cutoff:
                hits.popleft()
            if not hits:
                del self._hits[key]


def client_ip(headers: Mapping[str, str], fallback: str | None = None) -> str:
    forwarded = headers.get("x-forwarded-for")
    if forwarded:
        return forwarded.split(",")[0].strip()
    real_ip = headers.get("x-real-ip")
    if real_ip:
        return real_ip.strip()
    return fallback or "unknown"


__all__ = ["RateLimitResult", "SlidingWindowRateLimiter", "client_ip"]
