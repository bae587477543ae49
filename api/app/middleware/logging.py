"""Structured request logging middleware."""

from __future__ import annotations

import logging
import time
import uuid
from typing import Callable

from fastapi import Request

REQUEST_ID_HEADER = "x-request-id"


class StructuredLoggingMiddleware:
    """Log request/response details and propagate a request ID."""

    def __init__(self, app: Callable) -> None:
        self.app = app
        self.logger = logging.getLogger("api.access")

    async def __call__(self, scope: dict, receive: Callable, send: Callable) -> None:
        if scope["type"] != "http":
            await self.app(scope, receive, send)
            return

        start = time.perf_counter()
        request = Request(scope, receive=receive)
        request_id = request.headers.get(REQUEST_ID_HEADER) or uuid.uuid4().hex

        async def send_wrapper(message: dict) -> None:
            if message["type"] == "http.response.start":
                headers = list(message.get("headers", []))
                headers.append((REQUEST_ID_HEADER.encode("latin-1"), request_id.encode("latin-1")))
                message["headers"] = headers
                elapsed_ms = (time.perf_counter() - start) * 1000
                self.logger.info(
                    "request_completed",
                    extra={
                        "request_id": request_id,
                        "method": request.method,
                        "path": request.url.path,
                        "status_code": message["status"],
                        "client_ip": request.client.host if request.client else None,
                        "duration_ms": round(elapsed_ms, 2),
                        "user_agent": request.headers.get("user-agent"),
                    },
                )
            await send(message)

        await self.app(scope, receive, send_wrapper)
