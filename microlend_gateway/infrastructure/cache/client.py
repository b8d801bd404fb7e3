"""Redis cache client"""

import json
from typing import Any, Optional

import redis

from microlend_gateway.config import settings


class CacheClient:
    """
    Thin wrapper over a Redis connection.

    Errors (redis.RedisError) propagate; callers decide whether a failure is
    critical (locks) or can be logged and skipped (derived-value caches).
    """

    def __init__(self, client: redis.Redis):
        self.redis = client

    @classmethod
    def from_url(cls, url: str) -> "CacheClient":
        return cls(redis.Redis.from_url(url, decode_responses=True))

    def get(self, key: str) -> Optional[str]:
        return self.redis.get(key)

    def set(self, key: str, value: str, ttl_seconds: Optional[int] = None) -> None:
        self.redis.set(key, value, ex=ttl_seconds)

    def set_if_absent(self, key: str, value: str, ttl_seconds: int) -> bool:
        """Atomic SET NX EX; True only for the caller that created the key"""
        return bool(self.redis.set(key, value, ex=ttl_seconds, nx=True))

    def delete(self, *keys: str) -> None:
        if keys:
            self.redis.delete(*keys)

    def delete_pattern(self, pattern: str) -> int:
        keys = list(self.redis.scan_iter(match=pattern))
        if keys:
            self.redis.delete(*keys)
        return len(keys)

    def get_json(self, key: str) -> Optional[Any]:
        raw = self.get(key)
        if raw is None:
            return None
        try:
            return json.loads(raw)
        except ValueError:
            return None

    def set_json(self, key: str, value: Any, ttl_seconds: Optional[int] = None) -> None:
        self.set(key, json.dumps(value), ttl_seconds)


cache_client = CacheClient.from_url(settings.redis_url)


def get_cache() -> CacheClient:
    """Dependency injection for the shared cache client"""
    return cache_client
