from __future__ import annotations

from functools import lru_cache

import redis

from sysguard.core.config import get_settings


@lru_cache(maxsize=1)
def _sync_client() -> redis.Redis:
    settings = get_settings()
    return redis.Redis.from_url(settings.redis_url, decode_responses=True)


def get_sync_redis() -> redis.Redis:
    return _sync_client()


__all__ = ["get_sync_redis"]
