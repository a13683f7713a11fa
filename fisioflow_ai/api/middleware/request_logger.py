"""Request logging middleware with per-request timing."""

import logging
import time
import uuid
from typing import Callable

from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware

logger = logging.getLogger(__name__)


class RequestLoggerMiddleware(BaseHTTPMiddleware):
    """Log method, path, status and latency; tag responses with a request id."""

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        start_time = time.perf_counter()
        request_id = request.headers.get("X-Request-ID") or f"req-{uuid.uuid4().hex[:12]}"

        logger.info(
            f"→ {request.method} {request.url.path} "
            f"[{request_id}] from {request.client.host if request.client else 'unknown'}"
        )

        try:
            response = await call_next(request)
        except Exception as e:
            latency_ms = (time.perf_counter() - start_time) * 1000
            logger.error(
                f"✗ {request.method} {request.url.path} "
                f"[{request_id}] ERROR in {latency_ms:.0f}ms: {e}"
            )
            raise

        latency_ms = (time.perf_counter() - start_time) * 1000
        logger.info(
            f"← {request.method} {request.url.path} "
            f"[{request_id}] {response.status_code} in {latency_ms:.0f}ms"
        )

        response.headers["X-Response-Time"] = f"{latency_ms:.2f}ms"
        response.headers["X-Request-ID"] = request_id
        return response
