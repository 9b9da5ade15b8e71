from decimal import Decimal

import pytest

from cardpoints.domain.models import AmountRounding, BonusTier, PointsRounding
from cardpoints.engine.calculator import calculate_for_rule, calculate_points, select_tier
from cardpoints.engine.rounding import round_amount, round_points

TIERS = [
    {"min_amount": 0, "max_amount": 100, "multiplier": 1},
    {"min_amount": 100, "max_amount": 500, "multiplier": 2},
    {"min_amount": 500, "multiplier": 3},
]


@pytest.mark.parametrize(
    "strategy, amount, expected",
    [
        (AmountRounding.FLOOR, 123.45, Decimal("123")),
        (AmountRounding.CEILING, 123.45, Decimal("124")),
        (AmountRounding.NEAREST, 123.5, Decimal("124")),
        (AmountRounding.NEAREST, 123.49, Decimal("123")),
        (AmountRounding.FLOOR_TO_BLOCK, 123.45, Decimal("120")),
        (AmountRounding.NONE, 123.45, Decimal("123.45")),
        (AmountRounding.FLOOR, -123.45, Decimal("-123")),
        (AmountRounding.FLOOR_TO_BLOCK, -123.45, Decimal("-120")),
    ],
)
def test_round_amount(strategy, amount, expected) -> None:
    assert round_amount(amount, strategy, block_size=5) == expected


def test_round_points_uses_exact_decimals() -> None:
    assert round_points(Decimal("0.29") * 100, PointsRounding.FLOOR) == 29
    assert round_points(Decimal("2.5"), PointsRounding.NEAREST) == 3
    assert round_points(Decimal("2.1"), PointsRounding.CEILING) == 3
    assert round_points(Decimal("-2.5"), PointsRounding.NEAREST) == -3


def test_floor_to_five_block_scenario(make_rule, make_input) -> None:
    rule = make_rule(
        base_multiplier=0.4,
        bonus_multiplier=3.6,
        amount_rounding_strategy="floor_to_block",
        block_size=5,
        monthly_cap=4000,
    )
    tx = make_input(amount=123.45)

    eligible = calculate_points(rule.reward, tx)
    assert eligible.block_amount == Decimal("120")
    assert eligible.base_points == 48
    assert eligible.bonus_points == 432

    ineligible = calculate_points(rule.reward, tx, bonus_eligible=False)
    assert ineligible.base_points == 48
    assert ineligible.bonus_points == 0


def test_calculate_for_rule_withholds_bonus_when_conditions_fail(make_rule, make_input) -> None:
    rule = make_rule(
        conditions=[{"type": "mcc", "operation": "include", "values": ["5812"]}],
        base_multiplier=1,
        bonus_multiplier=4,
    )

    assert calculate_for_rule(rule, make_input(amount=10, mcc="5812")).bonus_points == 40
    assert calculate_for_rule(rule, make_input(amount=10, mcc="5411")).bonus_points == 0


@pytest.mark.parametrize("amount, bonus", [(50, 50), (100, 200), (200, 400), (499, 998), (1000, 3000)])
def test_tiered_bonus_by_amount(make_rule, make_input, amount, bonus) -> None:
    rule = make_rule(calculation_method="tiered", base_multiplier=0, bonus_tiers=TIERS)

    breakdown = calculate_points(rule.reward, make_input(amount=amount))

    assert breakdown.bonus_points == bonus
    assert breakdown.base_points == 0


def test_overlapping_tiers_prefer_priority_then_declaration() -> None:
    tiers = [
        BonusTier(min_amount=0, multiplier=1),
        BonusTier(min_amount=0, multiplier=2),
        BonusTier(min_amount=50, multiplier=5, priority=3),
    ]

    assert select_tier(tiers, 10).multiplier == 1
    assert select_tier(tiers, 60).multiplier == 5


def test_spend_tiers_follow_monthly_spend(make_rule, make_input) -> None:
    rule = make_rule(
        calculation_method="tiered",
        base_multiplier=1,
        bonus_tiers=[
            {"min_spend": 0, "max_spend": 1000, "multiplier": 0},
            {"min_spend": 1000, "multiplier": 2},
        ],
    )

    low = calculate_points(rule.reward, make_input(amount=100, monthly_spend=400))
    high = calculate_points(rule.reward, make_input(amount=100, monthly_spend=1500))
    unknown = calculate_points(rule.reward, make_input(amount=100))

    assert low.bonus_points == 0
    assert high.bonus_points == 200
    assert high.tier.min_spend == 1000
    assert unknown.tier is None
    assert unknown.bonus_points == 0


def test_flat_rate_per_transaction_awards_fixed_points(make_rule, make_input) -> None:
    rule = make_rule(calculation_method="flat_rate", base_multiplier=50, bonus_multiplier=10)

    purchase = calculate_points(rule.reward, make_input(amount=3.20))
    refund = calculate_points(rule.reward, make_input(amount=-3.20, transaction_type="refund"))

    assert (purchase.base_points, purchase.bonus_points) == (50, 10)
    assert (refund.base_points, refund.bonus_points) == (-50, -10)


def test_flat_rate_per_unit_is_a_single_rate(make_rule, make_input) -> None:
    rule = make_rule(
        calculation_method="flat_rate",
        flat_rate_mode="per_unit",
        base_multiplier=1.5,
        bonus_multiplier=10,
        amount_rounding_strategy="floor",
    )

    breakdown = calculate_points(rule.reward, make_input(amount=20.99))

    assert breakdown.base_points == 30
    assert breakdown.bonus_points == 0


def test_refund_mirrors_purchase(make_rule, make_input) -> None:
    rule = make_rule(
        base_multiplier=0.4,
        bonus_multiplier=3.6,
        amount_rounding_strategy="floor_to_block",
        block_size=5,
    )

    purchase = calculate_points(rule.reward, make_input(amount=123.45))
    refund = calculate_points(rule.reward, make_input(amount=-123.45))

    assert refund.base_points == -purchase.base_points
    assert refund.bonus_points == -purchase.bonus_points


def test_points_never_decrease_as_amount_grows(make_rule, make_input) -> None:
    rule = make_rule(
        base_multiplier=0.4,
        bonus_multiplier=3.6,
        amount_rounding_strategy="floor_to_block",
        block_size=5,
    )

    previous = None
    for cents in range(-5000, 50000, 137):
        breakdown = calculate_points(rule.reward, make_input(amount=cents / 100))
        if previous is not None:
            assert breakdown.base_points >= previous.base_points
            assert breakdown.bonus_points >= previous.bonus_points
        previous = breakdown
