"""Distributed mutual exclusion on top of SET NX EX"""

import logging
import time
import uuid
from typing import Callable

import redis

from microlend_gateway.infrastructure.cache.client import CacheClient

logger = logging.getLogger(__name__)


class LockNotAcquiredError(Exception):
    """Lock is held elsewhere (or the cache is unreachable)"""

    def __init__(self, key: str):
        super().__init__(f"Could not acquire lock {key}")
        self.key = key


class DistributedLock:
    """
    Expiring lock held by whoever created the key.

    The TTL bounds how long a crashed holder can block others. Acquisition is
    retried a bounded number of times and then gives up. Release only deletes
    the key while it still carries this holder's token, so a lock that expired
    and was re-taken by someone else is left alone.

    Usage:
        with DistributedLock(cache, "loan:lock:42", ttl_seconds=30):
            ...
    """

    def __init__(
        self,
        cache: CacheClient,
        key: str,
        ttl_seconds: int,
        wait_attempts: int = 1,
        wait_interval_seconds: float = 0.0,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.cache = cache
        self.key = key
        self.ttl_seconds = ttl_seconds
        self.wait_attempts = max(1, wait_attempts)
        self.wait_interval_seconds = wait_interval_seconds
        self.token = uuid.uuid4().hex
        self._sleep = sleep
        self.held = False

    def acquire(self) -> bool:
        for attempt in range(1, self.wait_attempts + 1):
            try:
                if self.cache.set_if_absent(self.key, self.token, self.ttl_seconds):
                    self.held = True
                    return True
            except redis.RedisError as e:
                logger.error("Error acquiring lock", extra={"lock_key": self.key, "error": str(e)})
                return False

            if attempt < self.wait_attempts:
                self._sleep(self.wait_interval_seconds)
        return False

    def release(self) -> None:
        if not self.held:
            return
        try:
            if self.cache.get(self.key) == self.token:
                self.cache.delete(self.key)
        except redis.RedisError as e:
            # Key still expires on its own after the TTL
            logger.error("Error releasing lock", extra={"lock_key": self.key, "error": str(e)})
        finally:
            self.held = False

    def __enter__(self) -> "DistributedLock":
        if not self.acquire():
            raise LockNotAcquiredError(self.key)
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.release()
