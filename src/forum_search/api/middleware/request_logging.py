# Request Logging Middleware with Correlation IDs
# Tags each search request with a request_id for log correlation

import logging
import time
import uuid

from fastapi import Request
from starlette.middleware.base import BaseHTTPMiddleware

logger = logging.getLogger("forum_search.api")


def client_ip(request: Request) -> str:
    """Client IP from proxy headers or the direct connection."""
    forwarded_for = request.headers.get("X-Forwarded-For")
    if forwarded_for:
        return forwarded_for.split(",")[0].strip()

    real_ip = request.headers.get("X-Real-IP")
    if real_ip:
        return real_ip

    if request.client:
        return request.client.host

    return "unknown"


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """
    Assigns a request ID, logs timing and echoes the ID in X-Request-ID.
    """

    async def dispatch(self, request: Request, call_next):
        request_id = request.headers.get("X-Request-ID", str(uuid.uuid4()))
        request.state.request_id = request_id

        start_time = time.time()
        logger.info(
            f"{request.method} {request.url.path} started",
            extra={"request_id": request_id, "user_ip": client_ip(request)},
        )

        try:
            response = await call_next(request)
        except Exception as e:
            logger.exception(
                f"{request.method} {request.url.path} failed",
                extra={
                    "request_id": request_id,
                    "duration_ms": round((time.time() - start_time) * 1000, 2),
                    "error": str(e),
                },
            )
            raise

        logger.info(
            f"{request.method} {request.url.path} -> {response.status_code}",
            extra={
                "request_id": request_id,
                "status_code": response.status_code,
                "duration_ms": round((time.time() - start_time) * 1000, 2),
            },
        )
        response.headers["X-Request-ID"] = request_id
        return response
