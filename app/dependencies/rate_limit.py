from __future__ import annotations

import hashlib
import logging

from fastapi import HTTPException, Request
from redis.exceptions import RedisError

from app.core.results import ErrorCode, error_body
from app.core.security import client_ip, client_user_agent
from app.services.redis_store import hit_fixed_window, redis_configured

logger = logging.getLogger(__name__)


def rate_limit(endpoint: str, max_requests: int, window_seconds: int):
    """
    Fixed-window limiter keyed by endpoint, client IP and user-agent digest.

    Without Redis, or when Redis errors, requests are let through.
    """

    def _dependency(request: Request) -> None:
        if not redis_configured():
            return

        ip_address = client_ip(request) or "unknown"
        agent_digest = hashlib.sha256((client_user_agent(request) or "").encode("utf-8")).hexdigest()[:16]

        try:
            hit = hit_fixed_window(
                f"rate:{endpoint}",
                max_requests,
                window_seconds,
                ip_address,
                agent_digest,
            )
        except RedisError as exc:
            logger.warning("rate_limit_unavailable endpoint=%s error=%s", endpoint, exc)
            return

        if not hit.allowed:
            logger.warning("rate_limited endpoint=%s count=%s", endpoint, hit.count)
            raise HTTPException(
                status_code=429,
                detail=error_body(
                    ErrorCode.RATE_LIMITED,
                    "Too many requests. Please try again later.",
                    retry_after=hit.retry_after,
                ),
                headers={"Retry-After": str(hit.retry_after)},
            )

    return _dependency
