"""Redis cache client utilities."""

from functools import lru_cache
from typing import Any, Optional

import redis

from medibook.utils.config import get_settings


@lru_cache()
def get_redis_client() -> redis.Redis:
    """Return the process-wide Redis client. No connection is made until first use."""

    settings = get_settings()
    return redis.Redis.from_url(
        settings.redis_url,
        decode_responses=True,
        socket_connect_timeout=1,
        socket_timeout=1,
    )


def cache_set(key: str, value: Any, ex: Optional[int] = None) -> bool:
    """Set a value in Redis with optional expiration."""

    return bool(get_redis_client().set(name=key, value=value, ex=ex))


def cache_get(key: str) -> Optional[str]:
    """Get a value from Redis by key."""

    return get_redis_client().get(name=key)


def cache_incr(key: str, ex: Optional[int] = None) -> int:
    """Increment an integer key, refreshing its expiration, and return the new value."""

    pipe = get_redis_client().pipeline()
    pipe.incr(key)
    if ex is not None:
        pipe.expire(key, ex)
    return int(pipe.execute()[0])
