"""Per-token fixed-window rate limiting.

Each token gets a counter for the current window. Windows are aligned to
multiples of the window length since the Unix epoch (hour boundaries for the
default one-hour window) and roll over lazily: the first request after a
boundary starts a fresh count. No timers are involved.

Usage:
    limiter = RateLimiter(limit=1000, window_seconds=3600)
    status = limiter.hit(token)   # raises RateLimitExceeded when exhausted
    headers = status.headers()
"""

import hashlib
import threading
import time
from collections.abc import Callable
from dataclasses import dataclass

from task_service.core.errors import RateLimitExceeded
from task_service.utils.logging import get_logger
from task_service.utils.metrics import get_metrics

logger = get_logger(__name__)
metrics = get_metrics()


@dataclass(frozen=True)
class RateLimitStatus:
    """Quota state reported back to the caller."""

    limit: int
    remaining: int
    reset_at: int

    def headers(self) -> dict[str, str]:
        return {
            "X-RateLimit-Limit": str(self.limit),
            "X-RateLimit-Remaining": str(self.remaining),
            "X-RateLimit-Reset": str(self.reset_at),
        }


@dataclass
class _Window:
    start: float
    count: int = 0


class RateLimiter:
    """Thread-safe fixed-window request counter keyed by token identity."""

    def __init__(
        self,
        limit: int = 1000,
        window_seconds: int = 3600,
        clock: Callable[[], float] = time.time,
    ) -> None:
        """Initialize rate limiter.

        Args:
            limit: Requests admitted per token per window
            window_seconds: Window length in seconds
            clock: Source of Unix time (injectable for tests)
        """
        self.limit = limit
        self.window_seconds = window_seconds
        self._clock = clock
        self._lock = threading.Lock()
        self._windows: dict[str, _Window] = {}
        self._last_prune = 0.0

    @staticmethod
    def key_for(token: str) -> str:
        """Counter key for a token. Raw tokens are never held in memory as keys."""
        return hashlib.sha256(token.encode("utf-8")).hexdigest()

    def _window_start(self, now: float) -> float:
        return now - (now % self.window_seconds)

    def _current(self, key: str, now: float) -> _Window:
        start = self._window_start(now)
        window = self._windows.get(key)
        if window is None or window.start != start:
            window = _Window(start=start)
            self._windows[key] = window
        return window

    def _prune(self, now: float) -> None:
        # Drop counters from finished windows at most once per window.
        start = self._window_start(now)
        if self._last_prune >= start:
            return
        stale = [k for k, w in self._windows.items() if w.start < start]
        for key in stale:
            del self._windows[key]
        self._last_prune = start

    def hit(self, token: str) -> RateLimitStatus:
        """Count one request for ``token``.

        Args:
            token: Bearer token (or any stable identity string)

        Returns:
            Quota state after admitting the request

        Raises:
            RateLimitExceeded: If the window's budget is already used up; the
                counter is not incremented in that case.
        """
        key = self.key_for(token)
        with self._lock:
            now = self._clock()
            self._prune(now)
            window = self._current(key, now)
            reset_at = int(window.start + self.window_seconds)

            if window.count >= self.limit:
                metrics.rate_limit_rejections_total.inc()
                logger.warning("rate_limit_exceeded", limit=self.limit, reset_at=reset_at)
                raise RateLimitExceeded(self.limit, reset_at)

            window.count += 1
            return RateLimitStatus(
                limit=self.limit,
                remaining=self.limit - window.count,
                reset_at=reset_at,
            )

    def peek(self, token: str) -> RateLimitStatus:
        """Report quota state without counting a request."""
        key = self.key_for(token)
        with self._lock:
            now = self._clock()
            window = self._windows.get(key)
            start = self._window_start(now)
            used = window.count if window is not None and window.start == start else 0
            return RateLimitStatus(
                limit=self.limit,
                remaining=max(0, self.limit - used),
                reset_at=int(start + self.window_seconds),
            )

    def reset(self) -> None:
        """Forget all counters."""
        with self._lock:
            self._windows.clear()
            self._last_prune = 0.0
