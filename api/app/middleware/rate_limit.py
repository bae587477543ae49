"""In-memory per-client rate limiting middleware."""

from __future__ import annotations

import math
import time
from collections import defaultdict, deque
from typing import Callable, Deque

from fastapi import Request
from starlette.responses import JSONResponse

from app.config import settings

# Probes and webhook deliveries are not throttled per client IP.
EXEMPT_PATHS = frozenset({"/healthz", "/api/webhooks/twitter"})


class RateLimitMiddleware:
    """Sliding window limiter keyed on client IP."""

    def __init__(
        self,
        app: Callable,
        limit: int | None = None,
        window_seconds: int | None = None,
    ) -> None:
        self.app = app
        self.limit = limit or settings.rate_limit_requests
        self.window_seconds = window_seconds or settings.rate_limit_window_seconds
        self._requests: dict[str, Deque[float]] = defaultdict(deque)

    async def __call__(self, scope: dict, receive: Callable, send: Callable) -> None:
        if scope["type"] != "http" or scope.get("path") in EXEMPT_PATHS:
            await self.app(scope, receive, send)
            return

        request = Request(scope, receive=receive)
        client_ip = request.client.host if request.client else "unknown"
        now = time.monotonic()

        request_times = self._requests[client_ip]
        while request_times and request_times[0] <= now - self.window_seconds:
            request_times.popleft()

        if len(request_times) >= self.limit:
            retry_after = max(1, math.ceil(request_times[0] + self.window_seconds - now))
            response = JSONResponse(
                {"detail": "Rate limit exceeded"},
                status_code=429,
                headers={"Retry-After": str(retry_after)},
            )
            await response(scope, receive, send)
            return

        request_times.append(now)
        await self.app(scope, receive, send)
