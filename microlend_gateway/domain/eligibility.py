"""Eligibility rules - score thresholds, pricing bands and offer construction"""

from decimal import Decimal, ROUND_HALF_UP
from typing import List, Sequence, TypeVar

from microlend_gateway.domain.models import EligibilityConfig, LoanOffer, ScoreBand, ScoreThreshold

T = TypeVar("T", int, float, Decimal)

# Fractions of the eligible amount offered as selectable options
OFFER_FRACTIONS = (Decimal("0.5"), Decimal("0.75"), Decimal("1"))


def clamp(value: T, lower: T, upper: T) -> T:
    if value < lower:
        return lower
    if value > upper:
        return upper
    return value


def amount_for_score(score: int, thresholds: Sequence[ScoreThreshold], fallback: Decimal) -> Decimal:
    """Amount of the highest threshold the score meets or exceeds"""
    for threshold in sorted(thresholds, key=lambda t: t.score, reverse=True):
        if score >= threshold.score:
            return threshold.amount
    return fallback


def base_amount(loan_count: int | None, score: int, config: EligibilityConfig) -> Decimal:
    """
    Eligible amount from score alone, before credit limit and debt adjustments.

    First-time borrowers get the configured starter amount regardless of score.
    """
    if not loan_count:
        return config.first_time_user_amount
    return amount_for_score(score, config.thresholds, config.fallback_amount)


def cap_to_credit_limit(amount: Decimal, credit_limit: Decimal, auto_limit_enabled: bool) -> Decimal:
    """Static limits cap the amount; auto-synced limits already track it"""
    if auto_limit_enabled:
        return amount
    if credit_limit > 0 and amount > credit_limit:
        return credit_limit
    return amount


def subtract_outstanding(amount: Decimal, total_outstanding: Decimal) -> Decimal:
    return max(Decimal("0"), amount - total_outstanding)


def band_value(score: int, bands: Sequence[ScoreBand], default: float) -> float:
    """First band (ascending by min score) whose inclusive range holds the score"""
    for band in sorted(bands, key=lambda b: b.min_score):
        if band.min_score <= score <= band.max_score:
            return band.value
    return default


def interest_rate_for_score(score: int, config: EligibilityConfig) -> float:
    rate = band_value(score, config.rate_bands, config.default_rate)
    return float(clamp(rate, config.min_rate, config.max_rate))


def repayment_period_for_score(score: int, config: EligibilityConfig) -> int:
    period = band_value(score, config.period_bands, config.default_period)
    return int(clamp(int(period), config.min_period, config.max_period))


def build_offer_bands(
    eligible_amount: Decimal,
    interest_rate: float,
    repayment_period_days: int,
    currency: str,
) -> List[LoanOffer]:
    """
    Split an eligible amount into 50% / 75% / 100% offers.

    Amounts are rounded to whole units, capped at the eligible amount,
    de-duplicated and returned ascending with 1-based option numbers.
    """
    if eligible_amount <= 0:
        return []

    amounts = set()
    for fraction in OFFER_FRACTIONS:
        amount = (eligible_amount * fraction).quantize(Decimal("1"), rounding=ROUND_HALF_UP)
        amount = min(amount, eligible_amount)
        if amount > 0:
            amounts.add(amount)

    return [
        LoanOffer(
            option=index,
            amount=amount,
            currency=currency,
            interest_rate=interest_rate,
            repayment_period_days=repayment_period_days,
        )
        for index, amount in enumerate(sorted(amounts), start=1)
    ]
