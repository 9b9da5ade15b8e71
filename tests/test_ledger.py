from decimal import Decimal

import pytest
from sqlalchemy.ext.asyncio import create_async_engine
from sqlalchemy.pool import StaticPool

from cardpoints.domain.errors import LookupFailure
from cardpoints.domain.models import SpendPeriodType, UsageKey
from cardpoints.tracking.ledger import SqlUsageLedger


def make_key(tracking_id: str = "rule-1", month: int = 3) -> UsageKey:
    return UsageKey(
        user_id="user-1",
        tracking_id=tracking_id,
        instrument_id="pm-1",
        period_type=SpendPeriodType.CALENDAR,
        period_year=2026,
        period_month=month,
    )


@pytest.fixture
def engine():
    return create_async_engine("sqlite+aiosqlite://", poolclass=StaticPool)


@pytest.mark.asyncio
async def test_increments_accumulate_per_period(engine) -> None:
    ledger = SqlUsageLedger(engine)
    await ledger.create_schema()

    assert await ledger.get(make_key()) is None
    assert await ledger.add(make_key(), Decimal("120")) == 120
    assert await ledger.add(make_key(), Decimal("80.5")) == Decimal("200.5")
    assert await ledger.add(make_key(month=4), Decimal("10")) == 10
    assert await ledger.get(make_key()) == Decimal("200.5")

    await ledger.dispose()


@pytest.mark.asyncio
async def test_currency_amounts_are_stored_exactly(engine) -> None:
    ledger = SqlUsageLedger(engine)
    await ledger.create_schema()

    await ledger.add(make_key(), Decimal("0.1"))
    await ledger.add(make_key(), Decimal("0.2"))
    after = await ledger.add(make_key(), Decimal("-0.2"), floor_at_zero=True)

    assert after == Decimal("0.1")
    assert await ledger.get(make_key()) == Decimal("0.1")

    await ledger.dispose()


@pytest.mark.asyncio
async def test_floored_decrement_never_goes_negative(engine) -> None:
    ledger = SqlUsageLedger(engine)
    await ledger.create_schema()

    await ledger.add(make_key(), Decimal("50"))
    assert await ledger.add(make_key(), Decimal("-80"), floor_at_zero=True) == 0
    assert await ledger.add(make_key("fresh"), Decimal("-5"), floor_at_zero=True) == 0

    await ledger.dispose()


@pytest.mark.asyncio
async def test_set_overwrites_the_stored_value(engine) -> None:
    ledger = SqlUsageLedger(engine)
    await ledger.create_schema()

    await ledger.add(make_key(), Decimal("900"))
    assert await ledger.set(make_key(), Decimal("320")) == 320
    assert await ledger.get(make_key()) == 320

    await ledger.dispose()


@pytest.mark.asyncio
async def test_missing_schema_is_reported_as_lookup_failure(engine) -> None:
    ledger = SqlUsageLedger(engine)

    with pytest.raises(LookupFailure):
        await ledger.get(make_key())
    with pytest.raises(LookupFailure):
        await ledger.add(make_key(), Decimal("1"))

    await ledger.dispose()
