"""
Per-user rate limiting with a sliding window.
"""

import time
from collections import defaultdict
from typing import Callable, Optional

from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware

from teachback.shared.config import settings
from teachback.shared.logging import get_logger

logger = get_logger(__name__)

USER_HEADER = "X-User-Id"


class SlidingWindowRateLimiter:
    """In-memory sliding window rate limiter keyed by caller."""

    def __init__(self, requests_per_minute: int = 60, window_seconds: int = 60, clock: Callable[[], float] = time.time):
        self.requests_per_minute = requests_per_minute
        self.window_seconds = window_seconds
        self.clock = clock
        # caller key -> request timestamps inside the window
        self._requests: dict[str, list[float]] = defaultdict(list)
        self._last_sweep = clock()

    def _prune(self, key: str) -> list[float]:
        """Drop timestamps outside the window; callers with none left are forgotten."""
        cutoff = self.clock() - self.window_seconds
        recent = [t for t in self._requests.get(key, []) if t > cutoff]
        if recent:
            self._requests[key] = recent
        else:
            self._requests.pop(key, None)
        return recent

    def _sweep(self):
        """Once per window, forget every caller with no requests left in it."""
        if self.clock() - self._last_sweep < self.window_seconds:
            return
        for key in list(self._requests):
            self._prune(key)
        self._last_sweep = self.clock()

    def is_allowed(self, key: str) -> bool:
        self._sweep()
        return len(self._prune(key)) < self.requests_per_minute

    def record(self, key: str):
        self._requests[key].append(self.clock())

    def retry_after_seconds(self, key: str) -> int:
        """Seconds until the oldest request in the window expires."""
        recent = self._prune(key)
        if len(recent) < self.requests_per_minute:
            return 0
        oldest = min(recent)
        return max(1, int(self.window_seconds - (self.clock() - oldest)))


def get_caller_key(request: Request) -> Optional[str]:
    """Rate limit key: the user id header, falling back to client IP."""
    user_id = request.headers.get(USER_HEADER)
    if user_id:
        return f"user:{user_id[:64]}"
    client = request.client
    if client:
        return f"ip:{client.host}"
    return None


class RateLimitMiddleware(BaseHTTPMiddleware):
    """Per-user rate limiting middleware."""

    def __init__(
        self,
        app,
        requests_per_minute: Optional[int] = None,
        skip_paths: Optional[list[str]] = None,
    ):
        super().__init__(app)
        self.limiter = SlidingWindowRateLimiter(
            requests_per_minute or settings.api.rate_limit_requests_per_minute
        )
        self.skip_paths = set(skip_paths or ["/health", "/docs", "/openapi.json", "/redoc"])

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        path = request.url.path
        if path in self.skip_paths or path.startswith("/docs") or path.startswith("/redoc"):
            return await call_next(request)

        key = get_caller_key(request)
        if not key:
            return await call_next(request)

        if not self.limiter.is_allowed(key):
            retry_after = self.limiter.retry_after_seconds(key)
            logger.warning(
                "Rate limit exceeded",
                extra={"caller": key[:16], "retry_after": retry_after},
            )
            return Response(
                content='{"detail":"Rate limit exceeded. Try again later."}',
                status_code=429,
                headers={"Retry-After": str(retry_after), "Content-Type": "application/json"},
            )

        self.limiter.record(key)
        return await call_next(request)
