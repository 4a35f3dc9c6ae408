import time
import uuid
import logging
from typing import Callable

from fastapi import Request
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.responses import Response

from app.core.security import client_ip

logger = logging.getLogger(__name__)


class SecurityLoggingMiddleware(BaseHTTPMiddleware):
    """
    Request logging middleware.

    - Adds request_id (request.state and X-Request-ID header)
    - Logs method, path, status, latency, client IP and user id when known
    - Never logs cookies, bodies or headers carrying credentials
    """

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        request_id = str(uuid.uuid4())
        start_time = time.time()

        request.state.request_id = request_id

        try:
            response = await call_next(request)
        except Exception:
            logger.exception(
                "request_failed request_id=%s method=%s path=%s",
                request_id,
                request.method,
                request.url.path,
            )
            raise

        duration_ms = int((time.time() - start_time) * 1000)

        user = getattr(request.state, "user", None)
        user_id = str(user.id) if user is not None and getattr(user, "id", None) else None

        logger.info(
            "request_completed request_id=%s method=%s path=%s status=%s duration_ms=%s user_id=%s ip=%s",
            request_id,
            request.method,
            request.url.path,
            response.status_code,
            duration_ms,
            user_id,
            client_ip(request),
        )

        response.headers["X-Request-ID"] = request_id
        return response
