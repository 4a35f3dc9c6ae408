from __future__ import annotations

import hashlib
import time
from dataclasses import dataclass
from typing import Any

from redis import Redis

from app.core import config

KEY_PREFIX = "eternalgift"

# INCR the bucket, arm its expiry on first hit, report count and remaining ttl.
_FIXED_WINDOW_SCRIPT = """
local count = redis.call('INCR', KEYS[1])
if count == 1 then
    redis.call('EXPIRE', KEYS[1], ARGV[1])
end
local ttl = redis.call('TTL', KEYS[1])
return {count, ttl}
"""

_redis_client: Redis | None = None


@dataclass
class WindowHit:
    allowed: bool
    count: int
    retry_after: int


def redis_configured() -> bool:
    return bool(config.REDIS_URL)


def get_redis() -> Redis:
    global _redis_client
    if not config.REDIS_URL:
        raise RuntimeError("REDIS_URL not set")
    if _redis_client is None:
        _redis_client = Redis.from_url(
            config.REDIS_URL,
            decode_responses=True,
            socket_connect_timeout=2,
            socket_timeout=2,
        )
    return _redis_client


def limiter_key(namespace: str, *parts: Any) -> str:
    """Client identifiers are hashed so raw IPs never land in Redis keys."""
    digest = hashlib.sha256("|".join(str(part) for part in parts).encode("utf-8")).hexdigest()
    return f"{KEY_PREFIX}:{namespace}:{digest}"


def hit_fixed_window(namespace: str, limit: int, window_seconds: int, *parts: Any) -> WindowHit:
    bucket = int(time.time()) // window_seconds
    key = limiter_key(namespace, *parts, bucket)

    count, ttl = get_redis().eval(_FIXED_WINDOW_SCRIPT, 1, key, int(window_seconds))
    count, ttl = int(count or 0), int(ttl or 0)
    return WindowHit(
        allowed=count <= limit,
        count=count,
        retry_after=ttl if ttl > 0 else window_seconds,
    )
