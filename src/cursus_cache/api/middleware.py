"""
Middleware for the cache API

Request logging with correlation ids and HTTP request metrics.
"""

import time
from uuid import uuid4

from fastapi import Request
from starlette.middleware.base import BaseHTTPMiddleware

from ..shared.logging_config import CorrelationContext, get_logger
from ..shared.metrics_collector import get_metrics_collector

logger = get_logger(__name__, 'http')

CORRELATION_HEADER = "X-Correlation-ID"


class LoggingMiddleware(BaseHTTPMiddleware):
    """Logging middleware for request/response tracking."""

    async def dispatch(self, request: Request, call_next):
        correlation_id = request.headers.get(CORRELATION_HEADER) or str(uuid4())
        start_time = time.time()

        with CorrelationContext(correlation_id, request_id_value=str(uuid4())):
            logger.info(
                f"Request: {request.method} {request.url.path} "
                f"from {request.client.host if request.client else 'unknown'}",
                operation="request",
                method=request.method,
                path=request.url.path
            )

            response = await call_next(request)
            process_time = time.time() - start_time

            logger.info(
                f"Response: {response.status_code} in {process_time:.3f}s",
                operation="response",
                status_code=response.status_code,
                duration=process_time
            )

        get_metrics_collector().record_request(
            request.method, request.url.path, response.status_code, process_time
        )

        response.headers["X-Process-Time"] = str(process_time)
        response.headers[CORRELATION_HEADER] = correlation_id
        return response
