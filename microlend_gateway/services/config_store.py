"""Business configuration read from the system_config table"""

import logging
from decimal import Decimal
from typing import Any, Optional

from sqlalchemy.orm import Session

from microlend_gateway.domain.models import (
    DEFAULT_REPAYMENT_SCORING,
    EligibilityConfig,
    RepaymentScoringConfig,
    ScoreBand,
    ScoreThreshold,
)
from microlend_gateway.infrastructure.database.models import SystemConfig
from microlend_gateway.infrastructure.database.repositories import SystemConfigRepository

logger = logging.getLogger(__name__)

_MISSING = object()

DEFAULT_THRESHOLDS = [{"score": 0, "amount": 500}, {"score": 1000, "amount": 1000}]
DEFAULT_FALLBACK_AMOUNT = 500

DEFAULT_INTEREST_RATE_TIERS = [
    {"min_score": 0, "max_score": 500, "rate": 10},
    {"min_score": 501, "max_score": 1000, "rate": 7},
    {"min_score": 1001, "max_score": 9999, "rate": 5},
]

DEFAULT_REPAYMENT_PERIOD_OPTIONS = [
    {"min_score": 0, "max_score": 500, "period": 14},
    {"min_score": 501, "max_score": 1000, "period": 30},
    {"min_score": 1001, "max_score": 9999, "period": 60},
]


class SystemConfigService:
    """(category, key) lookups with code defaults for anything not configured"""

    def __init__(self, db: Session):
        self.repository = SystemConfigRepository(db)

    def get_value(self, category: str, key: str, default: Any = _MISSING) -> Any:
        config = self.repository.find(category, key)
        if config is None or config.value is None:
            if default is _MISSING:
                raise LookupError(f"Configuration {category}/{key} is not set")
            return default
        return config.value

    def set_value(self, category: str, key: str, value: Any, description: Optional[str] = None) -> SystemConfig:
        return self.repository.upsert(category, key, value, description)

    def scoring_config(self) -> RepaymentScoringConfig:
        """Repayment scoring tables, falling back to defaults if the stored value is unusable"""
        raw = self.get_value("credit_score", "repayment_scoring", DEFAULT_REPAYMENT_SCORING)
        try:
            return RepaymentScoringConfig.from_dict(raw)
        except (KeyError, TypeError, AttributeError) as e:
            logger.warning("Invalid repayment scoring config, using defaults", extra={"error": str(e)})
            return RepaymentScoringConfig.from_dict(DEFAULT_REPAYMENT_SCORING)

    def max_score(self) -> int:
        return int(self.get_value("credit_score", "max_score", 1000))

    def eligibility_config(self) -> EligibilityConfig:
        thresholds = self.get_value("credit_score", "thresholds", DEFAULT_THRESHOLDS)
        rate_tiers = self.get_value("loan", "interest_rate.tiers", DEFAULT_INTEREST_RATE_TIERS)
        period_options = self.get_value("loan", "repayment_period.options", DEFAULT_REPAYMENT_PERIOD_OPTIONS)

        return EligibilityConfig(
            first_time_user_amount=Decimal(str(self.get_value("loan", "first_time_user_amount", 500))),
            thresholds=tuple(ScoreThreshold(int(t["score"]), Decimal(str(t["amount"]))) for t in thresholds),
            fallback_amount=Decimal(DEFAULT_FALLBACK_AMOUNT),
            default_rate=float(self.get_value("loan", "interest_rate.default", 5)),
            rate_bands=tuple(ScoreBand(int(t["min_score"]), int(t["max_score"]), float(t["rate"])) for t in rate_tiers),
            min_rate=float(self.get_value("loan", "interest_rate.min", 1)),
            max_rate=float(self.get_value("loan", "interest_rate.max", 20)),
            default_period=int(self.get_value("loan", "repayment_period.default", 30)),
            period_bands=tuple(
                ScoreBand(int(o["min_score"]), int(o["max_score"]), int(o["period"])) for o in period_options
            ),
            min_period=int(self.get_value("loan", "repayment_period.min", 7)),
            max_period=int(self.get_value("loan", "repayment_period.max", 90)),
        )
