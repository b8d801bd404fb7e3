"""Short-lived offer sessions kept in the cache"""

import logging
from typing import Optional

import redis

from microlend_gateway.domain.models import OfferSession
from microlend_gateway.infrastructure.cache.client import CacheClient

logger = logging.getLogger(__name__)


class OfferSessionStore:
    """Offer sessions expire quickly; a missing one is simply recomputed"""

    def __init__(self, cache: CacheClient, ttl_seconds: int):
        self.cache = cache
        self.ttl_seconds = ttl_seconds

    @staticmethod
    def build_key(session_key: str) -> str:
        return f"loan-offer:{session_key}"

    def save(self, session: OfferSession) -> None:
        key = self.build_key(session.session_key)
        try:
            self.cache.set_json(key, session.to_dict(), self.ttl_seconds)
        except redis.RedisError as e:
            logger.warning("Failed to store offer session", extra={"cache_key": key, "error": str(e)})

    def get(self, session_key: str) -> Optional[OfferSession]:
        key = self.build_key(session_key)
        try:
            data = self.cache.get_json(key)
        except redis.RedisError as e:
            logger.warning("Failed to read offer session", extra={"cache_key": key, "error": str(e)})
            return None
        if not data:
            return None
        try:
            return OfferSession.from_dict(data)
        except (KeyError, ValueError, TypeError):
            logger.warning("Discarding malformed offer session", extra={"cache_key": key})
            return None

    def invalidate(self, session_key: str) -> None:
        key = self.build_key(session_key)
        try:
            self.cache.delete(key)
        except redis.RedisError as e:
            logger.warning("Failed to invalidate offer session", extra={"cache_key": key, "error": str(e)})
