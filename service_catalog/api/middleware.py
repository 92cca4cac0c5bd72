"""
FastAPI Middleware for Request Tracking and Logging

Features:
- Per-request trace IDs (taken from X-Trace-ID / X-Correlation-ID or generated)
- Request/response logging with duration
- Slow request warnings
"""

import time
import uuid
from typing import Callable
from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.types import ASGIApp

from service_catalog.core.logging_config import get_logger, set_trace_id, clear_trace_id


logger = get_logger(__name__)


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """Binds a trace ID to every request and logs its outcome.

    Multipart uploads can be large, so request bodies are never logged;
    only method, path, status and timing are.
    """

    def __init__(self, app: ASGIApp, slow_request_threshold_ms: float = 1000.0):
        """
        Args:
            app: FastAPI application instance
            slow_request_threshold_ms: Requests slower than this are logged as warnings
        """
        super().__init__(app)
        self.slow_request_threshold_ms = slow_request_threshold_ms

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        trace_id = (
            request.headers.get("X-Trace-ID") or
            request.headers.get("X-Correlation-ID") or
            str(uuid.uuid4())
        )
        set_trace_id(trace_id)

        start_time = time.perf_counter()
        method = request.method
        path = request.url.path

        logger.info(
            "request_started",
            method=method,
            path=path,
            client_host=request.client.host if request.client else "unknown",
            content_type=request.headers.get("content-type"),
            content_length=request.headers.get("content-length"),
        )

        try:
            response = await call_next(request)
        except Exception as exc:
            logger.error(
                "request_failed",
                method=method,
                path=path,
                duration_ms=round((time.perf_counter() - start_time) * 1000, 2),
                error_type=type(exc).__name__,
                error_message=str(exc),
                exc_info=True,
            )
            clear_trace_id()
            raise

        duration_ms = round((time.perf_counter() - start_time) * 1000, 2)
        log = logger.warning if duration_ms > self.slow_request_threshold_ms else logger.info
        log(
            "request_completed",
            method=method,
            path=path,
            status_code=response.status_code,
            duration_ms=duration_ms,
            slow=duration_ms > self.slow_request_threshold_ms,
        )

        response.headers["X-Trace-ID"] = trace_id
        response.headers["X-Correlation-ID"] = trace_id
        clear_trace_id()
        return response
