from __future__ import annotations

import time
from collections import deque
from threading import Lock

from fastapi import Depends, HTTPException, Request, status

from localbiz.core.config import settings


class SlidingWindowLimiter:
    """In-process sliding-window limiter keyed by ``scope:client``.

    Single-process only; state is lost on restart and not shared between workers.
    """

    def __init__(self, *, max_keys: int = 20_000) -> None:
        self._max_keys = max_keys
        self._lock = Lock()
        self._hits: dict[str, deque[float]] = {}

    def hit(self, key: str, *, limit: int, window_seconds: int) -> int:
        """Register a hit; returns 0 when allowed, else seconds until retry."""
        now = time.monotonic()
        window_start = now - window_seconds

        with self._lock:
            hits = self._hits.setdefault(key, deque())
            while hits and hits[0] <= window_start:
                hits.popleft()

            if len(hits) >= limit:
                return max(1, int(window_seconds - (now - hits[0])) + 1)

            hits.append(now)
            if len(self._hits) > self._max_keys:
                self._evict_idle(window_start)
            return 0

    def _evict_idle(self, window_start: float) -> None:
        idle = [k for k, hits in self._hits.items() if not hits or hits[-1] <= window_start]
        for k in idle:
            del self._hits[k]

    def reset(self) -> None:
        with self._lock:
            self._hits.clear()


limiter = SlidingWindowLimiter()


def client_ip(request: Request) -> str:
    xff = request.headers.get("x-forwarded-for")
    if xff:
        return xff.split(",")[0].strip() or "unknown"
    if request.client:
        return request.client.host
    return "unknown"


def rate_limit(scope: str, *, limit: int, window_seconds: int):
    """Dependency factory limiting how often one client may hit an endpoint."""

    def _dep(request: Request) -> None:
        if not settings.rate_limit_enabled:
            return
        retry_after = limiter.hit(f"{scope}:{client_ip(request)}", limit=limit, window_seconds=window_seconds)
        if retry_after:
            raise HTTPException(
                status_code=status.HTTP_429_TOO_MANY_REQUESTS,
                detail="Too many requests",
                headers={"Retry-After": str(retry_after)},
            )

    return Depends(_dep)
