"""Which cap period a transaction date falls into.

* calendar: the date's own month, resetting on the 1st.
* statement: months start on the instrument's statement day. The anchor is
  clamped to the length of the month, so a statement day of 31 starts
  February's period on the 28th (29th in leap years).
* promotional: every date maps to the bucket of the promotion's start, so a
  promotion spanning several months accumulates into one record.
"""

import calendar
from dataclasses import dataclass
from datetime import date, datetime, timedelta

from cardpoints.domain.errors import CalculationInputError
from cardpoints.domain.models import SpendPeriodType


@dataclass(frozen=True)
class PeriodBucket:
    period_type: SpendPeriodType
    year: int
    month: int
    statement_day: int


def _as_date(value: date | datetime) -> date:
    return value.date() if isinstance(value, datetime) else value


def _anchor_day(year: int, month: int, statement_day: int) -> int:
    return min(statement_day, calendar.monthrange(year, month)[1])


def _previous_month(year: int, month: int) -> tuple[int, int]:
    return (year - 1, 12) if month == 1 else (year, month - 1)


def _next_month(year: int, month: int) -> tuple[int, int]:
    return (year + 1, 1) if month == 12 else (year, month + 1)


def effective_statement_day(period_type: SpendPeriodType, statement_day: int) -> int:
    return statement_day if period_type == SpendPeriodType.STATEMENT else 1


def resolve_period(
    on_date: date | datetime,
    period_type: SpendPeriodType,
    statement_day: int = 1,
    promo_start: date | datetime | None = None,
) -> PeriodBucket:
    if not 1 <= statement_day <= 31:
        raise CalculationInputError(f"statement_day must be between 1 and 31, got {statement_day}")

    day = _as_date(on_date)

    if period_type == SpendPeriodType.PROMOTIONAL:
        anchor = _as_date(promo_start) if promo_start is not None else day
        return PeriodBucket(period_type, anchor.year, anchor.month, 1)

    if period_type == SpendPeriodType.STATEMENT:
        year, month = day.year, day.month
        if day.day < _anchor_day(year, month, statement_day):
            year, month = _previous_month(year, month)
        return PeriodBucket(period_type, year, month, statement_day)

    return PeriodBucket(SpendPeriodType.CALENDAR, day.year, day.month, 1)


def period_bounds(
    bucket: PeriodBucket,
    promo_end: date | datetime | None = None,
    promo_start: date | datetime | None = None,
) -> tuple[date, date]:
    """Inclusive first and last day of ``bucket``."""
    if bucket.period_type == SpendPeriodType.PROMOTIONAL:
        start = _as_date(promo_start) if promo_start is not None else date(bucket.year, bucket.month, 1)
        if promo_end is not None:
            return start, _as_date(promo_end)
        last = calendar.monthrange(bucket.year, bucket.month)[1]
        return start, date(bucket.year, bucket.month, last)

    if bucket.period_type == SpendPeriodType.STATEMENT:
        start = date(bucket.year, bucket.month, _anchor_day(bucket.year, bucket.month, bucket.statement_day))
        next_year, next_month = _next_month(bucket.year, bucket.month)
        next_start = date(next_year, next_month, _anchor_day(next_year, next_month, bucket.statement_day))
        return start, next_start - timedelta(days=1)

    last = calendar.monthrange(bucket.year, bucket.month)[1]
    return date(bucket.year, bucket.month, 1), date(bucket.year, bucket.month, last)
