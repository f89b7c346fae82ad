"""
Request logging and correlation ids.

Every response carries ``X-Correlation-ID`` (echoed from the request when the
client sent one) and ``X-Process-Time`` in milliseconds.
"""

import logging
import time
import uuid

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response

CORRELATION_HEADER = "X-Correlation-ID"

logger = logging.getLogger("courier.access")


def configure_logging(debug: bool = False):
    logging.basicConfig(
        level=logging.DEBUG if debug else logging.INFO,
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    )


def _level_for(status_code: int) -> int:
    if status_code >= 500:
        return logging.ERROR
    if status_code >= 400:
        return logging.WARNING
    return logging.INFO


class ObservabilityMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next) -> Response:
        correlation_id = request.headers.get(CORRELATION_HEADER) or str(uuid.uuid4())
        started = time.perf_counter()

        response = await call_next(request)

        elapsed_ms = round((time.perf_counter() - started) * 1000, 2)
        response.headers[CORRELATION_HEADER] = correlation_id
        response.headers["X-Process-Time"] = str(elapsed_ms)

        logger.log(
            _level_for(response.status_code),
            "%s %s -> %d (%.2f ms)",
            request.method, request.url.path, response.status_code, elapsed_ms,
            extra={
                "correlation_id": correlation_id,
                "client_ip": request.client.host if request.client else "unknown",
            },
        )
        return response
