"""In-memory sliding-window rate limiter.

Used by the login endpoint. For multi-replica deployments, back it with a
shared store instead.
"""

from __future__ import annotations

import threading
import time
from collections import defaultdict, deque

from fastapi import HTTPException, status


class InMemoryRateLimiter:
    """Sliding-window rate limiter keyed by an arbitrary string (e.g. client IP)."""

    def __init__(self, window_seconds: int = 60, max_attempts: int = 5) -> None:
        self._window = window_seconds
        self._max = max_attempts
        self._attempts: dict[str, deque[float]] = defaultdict(deque)
        # Sync endpoints run on a thread pool
        self._lock = threading.Lock()

    def check(self, key: str) -> None:
        """Raise HTTP 429 if *key* has used up its attempts in the window."""
        now = time.monotonic()
        with self._lock:
            attempts = self._attempts[key]
            while attempts and now - attempts[0] >= self._window:
                attempts.popleft()
            if len(attempts) >= self._max:
                raise HTTPException(
                    status_code=status.HTTP_429_TOO_MANY_REQUESTS,
                    detail=f"Too many attempts. Try again in {self._window} seconds.",
                )
            attempts.append(now)

    def reset(self, key: str | None = None) -> None:
        with self._lock:
            if key is None:
                self._attempts.clear()
            else:
                self._attempts.pop(key, None)
