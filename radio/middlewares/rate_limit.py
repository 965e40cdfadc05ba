"""
Sliding-window rate limiting middleware.

Each client address gets at most RATE_LIMIT_CALLS mutating requests
(POST / PATCH / DELETE) per RATE_LIMIT_PERIOD seconds. Reads, listen polls
and streams are never limited.
"""
from __future__ import annotations

import time
from collections import defaultdict, deque
from typing import Awaitable, Callable, Deque, Dict

from aiohttp import web

from config import RATE_LIMIT_CALLS, RATE_LIMIT_PERIOD

MUTATING_METHODS = {"POST", "PATCH", "PUT", "DELETE"}


class RateLimiter:
    def __init__(self, calls: int = RATE_LIMIT_CALLS, period: int = RATE_LIMIT_PERIOD) -> None:
        self.calls = calls
        self.period = period
        self._buckets: Dict[str, Deque[float]] = defaultdict(deque)

    def hit(self, key: str) -> int:
        """Record a call; return 0 if allowed, else seconds until retry."""
        now    = time.monotonic()
        bucket = self._buckets[key]

        # Remove timestamps outside the window
        while bucket and bucket[0] < now - self.period:
            bucket.popleft()

        if len(bucket) >= self.calls:
            return max(1, int(self.period - (now - bucket[0])))

        bucket.append(now)
        return 0

    @web.middleware
    async def middleware(
        self,
        request: web.Request,
        handler: Callable[[web.Request], Awaitable[web.StreamResponse]],
    ) -> web.StreamResponse:
        if request.method not in MUTATING_METHODS:
            return await handler(request)

        retry_in = self.hit(request.remote or "unknown")
        if retry_in:
            return web.json_response(
                {
                    "error": f"Slow down! {self.calls} changes per {self.period}s. Retry in {retry_in}s.",
                    "code": "RateLimited",
                },
                status=429,
                headers={"Retry-After": str(retry_in)},
            )
        return await handler(request)
