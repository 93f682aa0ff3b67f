# oncall/core/request_logging.py
"""
Per-request access log with timing and a correlation id.
"""

import time
import uuid
from collections.abc import Callable

from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware

from oncall.core.logging_config import get_logger

logger = get_logger(__name__)

REQUEST_ID_HEADER = "X-Request-ID"

# Polled by monitoring and the dashboard
QUIET_PATHS = {"/health", "/api/status"}


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """
    Logs method, path, status and duration for every request.

    An incoming X-Request-ID is reused so callers can correlate their own
    logs; otherwise a new id is generated. Either way it is echoed back.
    """

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        request_id = request.headers.get(REQUEST_ID_HEADER) or uuid.uuid4().hex
        request.state.request_id = request_id
        started = time.perf_counter()

        try:
            response = await call_next(request)
        except Exception as e:
            elapsed = _elapsed_ms(started)
            logger.error(
                f"{request.method} {request.url.path} failed after {elapsed}ms: {e}",
                extra={"extra_fields": _fields(request, request_id, 500, elapsed)},
                exc_info=True,
            )
            raise

        elapsed = _elapsed_ms(started)
        status = response.status_code
        line = f"{request.method} {request.url.path} -> {status} in {elapsed}ms"
        fields = {"extra_fields": _fields(request, request_id, status, elapsed)}

        if status >= 500:
            logger.error(line, extra=fields)
        elif status >= 400:
            logger.warning(line, extra=fields)
        elif request.url.path in QUIET_PATHS:
            logger.debug(line, extra=fields)
        else:
            logger.info(line, extra=fields)

        response.headers[REQUEST_ID_HEADER] = request_id
        return response


def _elapsed_ms(started: float) -> float:
    return round((time.perf_counter() - started) * 1000, 2)


def _fields(request: Request, request_id: str, status: int, elapsed: float) -> dict:
    return {
        "request_id": request_id,
        "method": request.method,
        "path": request.url.path,
        "status_code": status,
        "duration_ms": elapsed,
    }
