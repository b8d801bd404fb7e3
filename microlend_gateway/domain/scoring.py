"""Repayment scoring engine - turns a confirmed repayment into credit score points"""

import math
from datetime import datetime
from decimal import Decimal
from typing import Sequence, Union

from microlend_gateway.domain.models import MultiplierTier, PointsCalculation, RepaymentScoringConfig
from microlend_gateway.utils.date_utils import elapsed_whole_days

Number = Union[int, float, Decimal]

INVALID_AMOUNT = "invalid_amount"
BELOW_MINIMUM_THRESHOLD = "below_minimum_threshold"


def find_tier_multiplier(value: float, tiers: Sequence[MultiplierTier]) -> float:
    """
    Multiplier of the tier whose inclusive range contains value.

    Tiers are scanned ascending by lower bound. When no range contains the
    value (gaps, or values past the last upper bound) the tier with the
    highest lower bound applies, acting as an open-ended fallback. An empty
    table is neutral (1.0).
    """
    ordered = sorted(tiers, key=lambda t: t.lower)
    for tier in ordered:
        if tier.lower <= value <= tier.upper:
            return tier.multiplier
    if ordered:
        return ordered[-1].multiplier
    return 1.0


def _round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def calculate_points(
    repayment_amount: Number,
    loan_amount: Number,
    disbursed_at: datetime,
    repaid_at: datetime,
    is_full_repayment: bool,
    config: RepaymentScoringConfig,
) -> PointsCalculation:
    """
    Calculate credit score points for a single repayment.

    Steps:
    1. points = base × amount multiplier × duration multiplier
    2. Partial repayment (when enabled): scale by repayment / loan amount,
       and award nothing if the scaled value is under the configured minimum
    3. Full repayment: apply the multiplicative bonus, then the fixed bonus
    4. Clamp to the per-transaction cap and round to the nearest integer

    The returned metadata is stored verbatim on the credit score history
    entry, so every intermediate value is kept.
    """
    repayment = float(repayment_amount or 0)
    if repayment <= 0:
        return PointsCalculation(
            points=0,
            metadata={"repayment_amount": repayment, "reason": INVALID_AMOUNT},
            reason=INVALID_AMOUNT,
        )

    loan = float(loan_amount or 0)
    duration_days = elapsed_whole_days(disbursed_at, repaid_at)
    amount_multiplier = find_tier_multiplier(repayment, config.amount_tiers)
    duration_multiplier = find_tier_multiplier(duration_days, config.duration_tiers)

    calculated_points = config.base_points * amount_multiplier * duration_multiplier
    repayment_percentage = repayment / loan if loan > 0 else 0.0
    final_points = calculated_points

    if config.enable_partial_repayments and not is_full_repayment:
        final_points = calculated_points * repayment_percentage
        minimum = config.min_points_for_partial_repayment
        if minimum and final_points < minimum:
            return PointsCalculation(
                points=0,
                metadata={
                    "repayment_amount": repayment,
                    "loan_amount": loan,
                    "duration_days": duration_days,
                    "amount_multiplier": amount_multiplier,
                    "duration_multiplier": duration_multiplier,
                    "base_points": config.base_points,
                    "calculated_points": calculated_points,
                    "final_points": final_points,
                    "is_partial_repayment": True,
                    "repayment_percentage": repayment_percentage,
                    "min_points_for_partial_repayment": minimum,
                    "reason": BELOW_MINIMUM_THRESHOLD,
                },
                reason=BELOW_MINIMUM_THRESHOLD,
            )

    if is_full_repayment:
        if config.full_repayment_bonus and config.full_repayment_bonus > 0:
            final_points = final_points * config.full_repayment_bonus
        if config.full_repayment_fixed_bonus and config.full_repayment_fixed_bonus > 0:
            final_points = final_points + config.full_repayment_fixed_bonus

    cap = config.max_points_per_transaction
    capped = bool(cap) and final_points >= cap
    if cap and final_points > cap:
        final_points = cap

    points = _round_half_up(final_points)

    return PointsCalculation(
        points=points,
        metadata={
            "repayment_amount": repayment,
            "loan_amount": loan,
            "duration_days": duration_days,
            "amount_multiplier": amount_multiplier,
            "duration_multiplier": duration_multiplier,
            "base_points": config.base_points,
            "calculated_points": calculated_points,
            "final_points": points,
            "is_partial_repayment": not is_full_repayment,
            "repayment_percentage": repayment_percentage if not is_full_repayment else 1,
            "full_repayment_bonus": config.full_repayment_bonus if is_full_repayment else None,
            "full_repayment_fixed_bonus": config.full_repayment_fixed_bonus if is_full_repayment else None,
            "capped": capped,
        },
    )
