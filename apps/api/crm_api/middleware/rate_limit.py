from __future__ import annotations

import math
import threading
import time
from collections.abc import Callable
from dataclasses import dataclass

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request

from crm_api.api.errors import error_response
from crm_api.core.config import get_settings


# Credential endpoints, grouped so each has its own bucket per client.
RATE_LIMITED_PATHS = {
    "/api/auth/login": "login",
    "/api/auth/register": "register",
    "/api/auth/refresh": "refresh",
}

WINDOW_SECONDS = 60


@dataclass
class TokenBucket:
    capacity: int
    tokens: float
    refilled_at: float

    def take(self, now: float, window_seconds: int) -> int:
        """Spend one token; return 0 on success or the seconds until one is available."""

        rate = self.capacity / float(window_seconds)
        self.tokens = min(float(self.capacity), self.tokens + max(0.0, now - self.refilled_at) * rate)
        self.refilled_at = now
        if self.tokens >= 1.0:
            self.tokens -= 1.0
            return 0
        return max(1, math.ceil((1.0 - self.tokens) / rate))


class AuthRateLimiter:
    def __init__(self, clock: Callable[[], float] = time.monotonic) -> None:
        self._clock = clock
        self._lock = threading.Lock()
        self._buckets: dict[tuple[str, str], TokenBucket] = {}
        self._pruned_at = clock()

    def __len__(self) -> int:
        return len(self._buckets)

    def retry_after(self, client_key: str, route_group: str, capacity: int) -> int:
        if capacity <= 0:
            return WINDOW_SECONDS
        now = self._clock()
        with self._lock:
            if now - self._pruned_at >= WINDOW_SECONDS:
                self._prune(now)
            bucket = self._buckets.get((client_key, route_group))
            if bucket is None or bucket.capacity != capacity:
                bucket = TokenBucket(capacity=capacity, tokens=float(capacity), refilled_at=now)
                self._buckets[(client_key, route_group)] = bucket
            return bucket.take(now, WINDOW_SECONDS)

    def _prune(self, now: float) -> None:
        # Idle for a full window means the bucket is full again.
        idle = [key for key, bucket in self._buckets.items() if now - bucket.refilled_at >= WINDOW_SECONDS]
        for key in idle:
            del self._buckets[key]
        self._pruned_at = now

    def clear(self) -> None:
        with self._lock:
            self._buckets.clear()


_limiter = AuthRateLimiter()


def reset_rate_limiter() -> None:
    _limiter.clear()


class AuthRateLimitMiddleware(BaseHTTPMiddleware):
    """Throttles credential guessing and refresh storms per client address."""

    async def dispatch(self, request: Request, call_next):  # type: ignore[no-untyped-def]
        settings = get_settings()
        route_group = RATE_LIMITED_PATHS.get(request.url.path.rstrip("/"))
        if settings.rate_limit_disabled or route_group is None or request.method.upper() != "POST":
            return await call_next(request)

        client_key = request.client.host if request.client is not None else "unknown"
        retry_after = _limiter.retry_after(client_key, route_group, settings.rate_limit_auth_per_minute)
        if retry_after == 0:
            return await call_next(request)

        return error_response(
            request,
            status_code=429,
            code="RATE_LIMITED",
            message="Too many requests",
            details={"route_group": route_group},
            headers={"Retry-After": str(retry_after)},
        )
