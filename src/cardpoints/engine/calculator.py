from dataclasses import dataclass
from decimal import Decimal

from cardpoints.domain.models import (
    BonusTier,
    CalculationInput,
    CalculationMethod,
    FlatRateMode,
    RewardConfig,
    RewardRule,
)
from cardpoints.engine.conditions import is_applicable
from cardpoints.engine.rounding import round_amount, round_points, to_decimal


@dataclass
class PointsBreakdown:
    base_points: int
    bonus_points: int
    block_amount: Decimal
    tier: BonusTier | None = None


def _within(quantity: float, lower: float | None, upper: float | None) -> bool:
    if lower is not None and quantity < lower:
        return False
    if upper is not None and quantity >= upper:
        return False
    return True


def select_tier(
    tiers: list[BonusTier],
    amount: float,
    monthly_spend: float | None = None,
) -> BonusTier | None:
    """Pick the tier whose bounds contain the amount and/or the monthly spend.

    Bounds are half-open (``min <= q < max``) and a missing max is open-ended.
    A tier bounded on spend never matches when the monthly spend is unknown.
    Overlaps go to the highest ``priority``, then to the earliest declared.
    """
    magnitude = abs(amount)
    candidates = []

    for index, tier in enumerate(tiers):
        if tier.has_amount_bounds and not _within(magnitude, tier.min_amount, tier.max_amount):
            continue
        if tier.has_spend_bounds:
            if monthly_spend is None:
                continue
            if not _within(monthly_spend, tier.min_spend, tier.max_spend):
                continue
        candidates.append((index, tier))

    if not candidates:
        return None

    candidates.sort(key=lambda item: (-item[1].priority, item[0]))
    return candidates[0][1]


def _signed_flat(points: float, amount: float, config: RewardConfig) -> int:
    awarded = round_points(points, config.points_rounding_strategy)
    return -awarded if amount < 0 else awarded


def calculate_points(
    config: RewardConfig,
    tx: CalculationInput,
    monthly_spend: float | None = None,
    bonus_eligible: bool = True,
) -> PointsBreakdown:
    """Raw base and bonus points for one transaction, before any cap."""
    if monthly_spend is None:
        monthly_spend = tx.monthly_spend

    block = round_amount(tx.amount, config.amount_rounding_strategy, config.block_size)
    rounding = config.points_rounding_strategy

    if config.calculation_method == CalculationMethod.FLAT_RATE:
        if config.flat_rate_mode == FlatRateMode.PER_UNIT:
            base = round_points(block * to_decimal(config.base_multiplier), rounding)
            return PointsBreakdown(base_points=base, bonus_points=0, block_amount=block)

        base = _signed_flat(config.base_multiplier, tx.amount, config)
        bonus = _signed_flat(config.bonus_multiplier, tx.amount, config) if bonus_eligible else 0
        return PointsBreakdown(base_points=base, bonus_points=bonus, block_amount=block)

    base = round_points(block * to_decimal(config.base_multiplier), rounding)

    if config.calculation_method == CalculationMethod.TIERED:
        tier = select_tier(config.bonus_tiers, tx.amount, monthly_spend)
        bonus = 0
        if tier is not None and bonus_eligible:
            bonus = round_points(block * to_decimal(tier.multiplier), rounding)
        return PointsBreakdown(base_points=base, bonus_points=bonus, block_amount=block, tier=tier)

    bonus = 0
    if bonus_eligible:
        bonus = round_points(block * to_decimal(config.bonus_multiplier), rounding)
    return PointsBreakdown(base_points=base, bonus_points=bonus, block_amount=block)


def calculate_for_rule(rule: RewardRule, tx: CalculationInput) -> PointsBreakdown:
    return calculate_points(rule.reward, tx, bonus_eligible=is_applicable(rule, tx))


def bonus_for_amount(config: RewardConfig, amount: Decimal, tier: BonusTier | None = None) -> int:
    """Bonus earned on an already rounded ``amount``, used when a spend cap trims it.

    A flat-rate bonus is not a rate: it is kept whole while any spend is left
    under the cap and dropped once none is.
    """
    if config.calculation_method == CalculationMethod.FLAT_RATE:
        if config.flat_rate_mode == FlatRateMode.PER_UNIT or amount == 0:
            return 0
        return _signed_flat(config.bonus_multiplier, float(amount), config)

    multiplier = tier.multiplier if tier is not None else config.bonus_multiplier
    return round_points(amount * to_decimal(multiplier), config.points_rounding_strategy)
