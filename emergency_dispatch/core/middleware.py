"""
FastAPI middleware for correlation ID propagation and request logging.
"""
import time
import uuid
from typing import Callable
from fastapi import Request, Response
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware

from emergency_dispatch.core.logging import correlation_context, get_logger

logger = get_logger(__name__)


class CorrelationIDMiddleware(BaseHTTPMiddleware):
    """Middleware to add correlation ID to requests and responses."""

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        """Process request and add correlation ID."""
        correlation_id = request.headers.get("X-Correlation-ID") or str(uuid.uuid4())[:8]
        organization_id = request.headers.get("X-Organization-ID")

        with correlation_context(correlation_id=correlation_id, organization_id=organization_id):
            logger.info(
                "Request started",
                method=request.method,
                path=request.url.path,
            )

            start_time = time.time()
            try:
                response = await call_next(request)
            except Exception as e:
                processing_time_ms = round((time.time() - start_time) * 1000, 2)
                logger.error(
                    "Request failed",
                    method=request.method,
                    path=request.url.path,
                    error=str(e),
                    processing_time_ms=processing_time_ms,
                    exc_info=True,
                )
                return JSONResponse(
                    status_code=500,
                    content={
                        "error": "Internal server error",
                        "correlation_id": correlation_id,
                        "timestamp": time.time(),
                    },
                    headers={"X-Correlation-ID": correlation_id},
                )

            processing_time_ms = round((time.time() - start_time) * 1000, 2)
            logger.info(
                "Request completed",
                method=request.method,
                path=request.url.path,
                status_code=response.status_code,
                processing_time_ms=processing_time_ms,
            )

            response.headers["X-Correlation-ID"] = correlation_id
            response.headers["X-Processing-Time-MS"] = str(processing_time_ms)
            return response
