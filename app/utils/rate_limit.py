"""
Optional per-account push rate limiting.

Fixed one-minute windows counted in Redis. Applies only when
LINE_PUSH_RATE_LIMIT_PER_MINUTE is set and REDIS_ENABLED; a Redis outage
lets pushes through rather than stalling delivery.
"""

from __future__ import annotations

import logging
import time
from typing import Optional

import redis

from app.config import get_settings

logger = logging.getLogger(__name__)

WINDOW_SECONDS = 60

_redis_client: Optional[redis.Redis] = None


def get_redis_client() -> Optional[redis.Redis]:
    """Shared Redis client, or None when Redis is disabled."""
    global _redis_client
    settings = get_settings()
    if not settings.redis_enabled:
        return None
    if _redis_client is None:
        _redis_client = redis.Redis(
            host=settings.redis_host, port=settings.redis_port, db=2
        )
    return _redis_client


def push_window_key(account_id: str, now: Optional[float] = None) -> str:
    window = int((now if now is not None else time.time()) // WINDOW_SECONDS)
    return f"linestep:ratelimit:push:{account_id}:{window}"


def check_push_rate_limit(
    account_id: str,
    redis_client: Optional[redis.Redis],
    limit_per_minute: Optional[int],
    now: Optional[float] = None,
) -> bool:
    """Count one push for the account; False once the current window is over the limit."""
    if redis_client is None or not limit_per_minute or limit_per_minute <= 0:
        return True
    key = push_window_key(account_id, now)
    try:
        pipe = redis_client.pipeline()
        pipe.incr(key)
        # keep the key past the window so a late incr never resets it
        pipe.expire(key, WINDOW_SECONDS * 2)
        count, _ = pipe.execute()
    except redis.RedisError as e:
        logger.warning("Rate limit check failed, allowing push: %s", e)
        return True
    return count <= limit_per_minute
