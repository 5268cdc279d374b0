import logging
import time
import uuid
from typing import Awaitable, Callable

from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware

from promo_engine.core.logging_config import request_id_ctx_var

logger = logging.getLogger("promo_engine.request")


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """Tags every request with an id (honouring an incoming X-Request-ID) and logs its outcome."""

    async def dispatch(self, request: Request, call_next: Callable[[Request], Awaitable[Response]]) -> Response:
        request_id = (request.headers.get("X-Request-ID") or "").strip()[:64] or str(uuid.uuid4())
        token = request_id_ctx_var.set(request_id)
        request.state.request_id = request_id
        started = time.perf_counter()
        status_code = 500
        try:
            response = await call_next(request)
            status_code = response.status_code
            response.headers["X-Request-ID"] = request_id
            return response
        finally:
            logger.info(
                "request",
                extra={
                    "path": request.url.path,
                    "method": request.method,
                    "status_code": status_code,
                    "duration_ms": int((time.perf_counter() - started) * 1000),
                },
            )
            request_id_ctx_var.reset(token)
