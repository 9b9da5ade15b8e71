"""Amount and points rounding.

Everything is computed on ``Decimal`` built from the float's string form so
that e.g. ``0.29 * 100`` gives exactly 29. Rounding is applied to the
magnitude and the sign restored afterwards, which makes a refund mirror the
purchase it reverses.
"""

from decimal import ROUND_CEILING, ROUND_FLOOR, ROUND_HALF_UP, Decimal

from cardpoints.domain.models import AmountRounding, PointsRounding

_POINTS_MODES = {
    PointsRounding.FLOOR: ROUND_FLOOR,
    PointsRounding.CEILING: ROUND_CEILING,
    PointsRounding.NEAREST: ROUND_HALF_UP,
}


def to_decimal(value: float | int | Decimal) -> Decimal:
    if isinstance(value, Decimal):
        return value
    return Decimal(str(value))


def _split_sign(value: Decimal) -> tuple[int, Decimal]:
    return (-1 if value < 0 else 1), abs(value)


def round_amount(
    amount: float | Decimal,
    strategy: AmountRounding,
    block_size: float = 1.0,
) -> Decimal:
    sign, magnitude = _split_sign(to_decimal(amount))

    if strategy == AmountRounding.FLOOR:
        rounded = magnitude.to_integral_value(rounding=ROUND_FLOOR)
    elif strategy == AmountRounding.CEILING:
        rounded = magnitude.to_integral_value(rounding=ROUND_CEILING)
    elif strategy == AmountRounding.NEAREST:
        rounded = magnitude.to_integral_value(rounding=ROUND_HALF_UP)
    elif strategy == AmountRounding.FLOOR_TO_BLOCK:
        block = to_decimal(block_size)
        rounded = (magnitude / block).to_integral_value(rounding=ROUND_FLOOR) * block
    else:
        rounded = magnitude

    return sign * rounded


def round_points(points: float | Decimal, strategy: PointsRounding) -> int:
    sign, magnitude = _split_sign(to_decimal(points))
    rounded = magnitude.to_integral_value(rounding=_POINTS_MODES.get(strategy, ROUND_FLOOR))
    return sign * int(rounded)
