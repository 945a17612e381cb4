"""Simple in-memory rate limiting helpers."""

from __future__ import annotations

import asyncio
import os
import time
from collections import deque
from dataclasses import dataclass
from typing import Deque, Dict, Optional


class RateLimitExceeded(Exception):
    def __init__(self, key: str, retry_after: float) -> None:
        super().__init__(f"Rate limit exceeded for {key}")
        self.key = key
        self.retry_after = retry_after


@dataclass
class _Bucket:
    hits: Deque[float]


class RateLimiter:
    """An asyncio-friendly sliding window rate limiter."""

    def __init__(self, *, limit: int, window_seconds: float) -> None:
        if limit <= 0:
            raise ValueError("limit must be positive")
        if window_seconds <= 0:
            raise ValueError("window_seconds must be positive")
        self.limit = limit
        self.window = window_seconds
        self._lock = asyncio.Lock()
        self._buckets: Dict[str, _Bucket] = {}

    def _prune(self, bucket: _Bucket, now: float) -> None:
        cutoff = now - self.window
        hits = bucket.hits
        while hits and hits[0] <= cutoff:
            hits.popleft()

    async def try_acquire(self, key: str) -> bool:
        now = time.monotonic()

        async with self._lock:
            bucket = self._buckets.get(key)
            if bucket is None:
                bucket = _Bucket(deque())
                self._buckets[key] = bucket

            self._prune(bucket, now)
            if len(bucket.hits) >= self.limit:
                return False

            bucket.hits.append(now)
            return True

    async def check(self, key: str) -> None:
        """Like ``try_acquire`` but raises ``RateLimitExceeded`` when over the limit."""
        if await self.try_acquire(key):
            return
        async with self._lock:
            bucket = self._buckets.get(key)
            oldest = bucket.hits[0] if bucket and bucket.hits else time.monotonic()
        raise RateLimitExceeded(key, max(0.0, oldest + self.window - time.monotonic()))

    async def reset(self, key: str) -> None:
        async with self._lock:
            self._buckets.pop(key, None)


_login_limiter: Optional[RateLimiter] = None


def get_login_rate_limiter() -> Optional[RateLimiter]:
    """Return the shared limiter for login attempts (5 per 15 minutes by default)."""

    global _login_limiter
    if _login_limiter is not None:
        return _login_limiter

    try:
        limit = int(os.getenv("LOGIN_RATE_LIMIT", "5"))
        window = float(os.getenv("LOGIN_RATE_WINDOW", "900"))
    except ValueError:
        limit = 5
        window = 900.0

    if limit <= 0:
        return None

    _login_limiter = RateLimiter(limit=limit, window_seconds=window)
    return _login_limiter


__all__ = ["RateLimiter", "RateLimitExceeded", "get_login_rate_limiter"]
