"""Per-borrower cache of derived eligibility values"""

import logging
from decimal import Decimal
from typing import Callable, Optional, TypeVar

import redis

from microlend_gateway.infrastructure.cache.client import CacheClient
from microlend_gateway.infrastructure.observability.metrics import eligibility_cache_counter

logger = logging.getLogger(__name__)

T = TypeVar("T")

PREFIX = "borrowers:"


def borrower_key(borrower_id, field: str) -> str:
    return f"{PREFIX}{borrower_id}:{field}"


class BorrowerCache:
    """
    Eligible amount, interest rate and repayment period per borrower.

    Every operation is best-effort: Redis failures are logged and treated as a
    cache miss so the primary operation continues against the database.
    """

    def __init__(self, cache: CacheClient, amount_ttl_seconds: int, terms_ttl_seconds: int):
        self.cache = cache
        self.amount_ttl_seconds = amount_ttl_seconds
        self.terms_ttl_seconds = terms_ttl_seconds

    def _safe(self, operation: str, key: str, fn: Callable[[], T], default: T) -> T:
        try:
            return fn()
        except redis.RedisError as e:
            logger.warning(
                "Cache operation failed",
                extra={"cache_key": key, "operation": operation, "error": str(e)},
            )
            return default

    def _get(self, borrower_id, field: str) -> Optional[str]:
        key = borrower_key(borrower_id, field)
        value = self._safe("cache_get", key, lambda: self.cache.get(key), None)
        eligibility_cache_counter.labels(field=field, result="hit" if value is not None else "miss").inc()
        return value

    def _set(self, borrower_id, field: str, value, ttl_seconds: int) -> None:
        key = borrower_key(borrower_id, field)
        self._safe("cache_set", key, lambda: self.cache.set(key, str(value), ttl_seconds), None)

    def get_eligible_amount(self, borrower_id) -> Optional[Decimal]:
        value = self._get(borrower_id, "eligible_amount")
        return Decimal(value) if value is not None else None

    def set_eligible_amount(self, borrower_id, amount: Decimal) -> None:
        self._set(borrower_id, "eligible_amount", amount, self.amount_ttl_seconds)

    def get_interest_rate(self, borrower_id) -> Optional[float]:
        value = self._get(borrower_id, "interest_rate")
        return float(value) if value is not None else None

    def set_interest_rate(self, borrower_id, rate: float) -> None:
        self._set(borrower_id, "interest_rate", rate, self.terms_ttl_seconds)

    def get_repayment_period(self, borrower_id) -> Optional[int]:
        value = self._get(borrower_id, "repayment_period")
        return int(value) if value is not None else None

    def set_repayment_period(self, borrower_id, days: int) -> None:
        self._set(borrower_id, "repayment_period", days, self.terms_ttl_seconds)

    def invalidate_eligible_amount(self, borrower_id) -> None:
        key = borrower_key(borrower_id, "eligible_amount")
        self._safe("cache_invalidate", key, lambda: self.cache.delete(key), None)

    def invalidate_borrower(self, borrower_id) -> None:
        """Drop every cached value derived from this borrower's score"""
        pattern = borrower_key(borrower_id, "*")
        self._safe("cache_invalidate", pattern, lambda: self.cache.delete_pattern(pattern), 0)

    def invalidate_lists(self) -> None:
        pattern = f"{PREFIX}list:*"
        self._safe("cache_invalidate", pattern, lambda: self.cache.delete_pattern(pattern), 0)

    def invalidate_stats(self) -> None:
        key = f"{PREFIX}stats"
        self._safe("cache_invalidate", key, lambda: self.cache.delete(key), None)
