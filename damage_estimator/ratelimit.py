"""
Per-client fixed-window rate limiting.

Each limiter instance owns its own counters, so separate routes (or test
cases) never share state.
"""

from __future__ import annotations

import math
import threading
import time
from dataclasses import dataclass
from typing import Callable, Dict, Optional, Tuple

from fastapi import Request


@dataclass
class _Window:
    started: float
    count: int


class RateLimiter:
    """
    Fixed-window limiter keyed by client identifier.

    Expired windows are pruned once more than ``prune_threshold`` clients
    are tracked.

    Usage:
        limiter = RateLimiter(window_seconds=60, max_requests=10)
        allowed, retry_after = limiter.check("203.0.113.7")
    """

    def __init__(
        self,
        window_seconds: float,
        max_requests: int,
        clock: Callable[[], float] = time.monotonic,
        prune_threshold: int = 1024,
    ) -> None:
        self.window_seconds = window_seconds
        self.max_requests = max_requests
        self.prune_threshold = prune_threshold
        self._clock = clock
        self._windows: Dict[str, _Window] = {}
        self._lock = threading.Lock()

    def check(self, key: str) -> Tuple[bool, int]:
        """
        Count one request for ``key``.

        Returns:
            (allowed, retry_after_seconds). ``retry_after`` is 0 when allowed.
        """
        now = self._clock()
        with self._lock:
            if len(self._windows) >= self.prune_threshold:
                self._prune(now)
            window = self._windows.get(key)
            if window is None or now - window.started >= self.window_seconds:
                self._windows[key] = _Window(started=now, count=1)
                return True, 0
            if window.count >= self.max_requests:
                remaining = self.window_seconds - (now - window.started)
                return False, max(1, math.ceil(remaining))
            window.count += 1
            return True, 0

    def _prune(self, now: float) -> None:
        expired = [
            key for key, window in self._windows.items()
            if now - window.started >= self.window_seconds
        ]
        for key in expired:
            del self._windows[key]

    def reset(self) -> None:
        with self._lock:
            self._windows.clear()

    def __len__(self) -> int:
        return len(self._windows)


def client_ip(request: Request) -> str:
    """Client IP from X-Forwarded-For (first hop), X-Real-IP, then the peer."""
    forwarded: Optional[str] = request.headers.get("x-forwarded-for")
    if forwarded:
        first = forwarded.split(",")[0].strip()
        if first:
            return first
    real_ip = request.headers.get("x-real-ip")
    if real_ip and real_ip.strip():
        return real_ip.strip()
    if request.client and request.client.host:
        return request.client.host
    return "unknown"
