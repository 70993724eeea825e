"""
Per-request logging context and access log.
"""

import logging
import uuid
import time
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response

from ..logging_config import request_id_var, client_id_var, get_logger

logger = get_logger(__name__)

SKIP_PATHS = {"/health", "/health/db", "/favicon.ico"}
REQUEST_ID_HEADER = "x-request-id"


def _elapsed_ms(started: float) -> int:
    return int((time.monotonic() - started) * 1000)


class LoggingMiddleware(BaseHTTPMiddleware):
    """
    Tags every log line written while serving a request with its request_id
    (the caller's x-request-id when present), and writes one line per request
    with status and duration. API-key routes store the caller on
    request.state.client_id, which is picked up for the closing line.
    """

    async def dispatch(self, request: Request, call_next) -> Response:
        request_id = request.headers.get(REQUEST_ID_HEADER) or uuid.uuid4().hex[:12]
        request_token = request_id_var.set(request_id)
        started = time.monotonic()
        fields = {"method": request.method, "path": request.url.path}
        quiet = request.url.path in SKIP_PATHS

        try:
            response = await call_next(request)
        except Exception as e:
            logger.error(
                f"Request failed: {e}",
                exc_info=True,
                extra={"action": "request_error",
                       "extra_data": {**fields, "duration_ms": _elapsed_ms(started)}},
            )
            raise
        else:
            client_id = getattr(request.state, "client_id", None)
            if client_id:
                client_id_var.set(client_id)
            if not quiet:
                status = response.status_code
                logger.log(
                    logging.WARNING if status >= 400 else logging.INFO,
                    f"{request.method} {request.url.path} -> {status}",
                    extra={"action": "request_end",
                           "extra_data": {**fields, "status_code": status,
                                          "duration_ms": _elapsed_ms(started)}},
                )
            response.headers[REQUEST_ID_HEADER] = request_id
            return response
        finally:
            request_id_var.reset(request_token)
            client_id_var.set(None)
