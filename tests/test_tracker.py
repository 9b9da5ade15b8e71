import asyncio
from datetime import date, datetime

import pytest

from cardpoints.domain.errors import CalculationInputError
from cardpoints.domain.models import SpendPeriodType
from cardpoints.tracking.ledger import InMemoryUsageLedger
from cardpoints.tracking.tracker import CapTracker, apply_cap, tracking_id_for

MARCH = datetime(2026, 3, 20)


class CountingLedger(InMemoryUsageLedger):
    def __init__(self) -> None:
        super().__init__()
        self.reads = 0

    async def get(self, key):
        self.reads += 1
        return await super().get(key)


@pytest.fixture
def ledger() -> CountingLedger:
    return CountingLedger()


@pytest.fixture
def tracker(ledger) -> CapTracker:
    return CapTracker(ledger)


def test_apply_cap() -> None:
    assert apply_cap(432, 3800, 4000) == (200, 0)
    assert apply_cap(100, 0, 4000) == (100, 3900)
    assert apply_cap(100, 4500, 4000) == (0, 0)
    with pytest.raises(CalculationInputError):
        apply_cap(10, 0, -1)


def test_tracking_id_for(make_rule) -> None:
    plain = make_rule(rule_id="r1", monthly_cap=100)
    grouped = make_rule(rule_id="r2", monthly_cap=100, cap_group_id="shared")
    spend = make_rule(rule_id="r3", monthly_cap=100, cap_group_id="shared", monthly_cap_type="spend_amount")

    assert tracking_id_for(plain) == "r1"
    assert tracking_id_for(grouped) == "shared"
    assert tracking_id_for(spend) == "shared:spend"


@pytest.mark.asyncio
async def test_unknown_usage_defaults_to_zero(tracker, instrument) -> None:
    assert await tracker.get_used("r1", instrument, SpendPeriodType.CALENDAR, MARCH) == 0


@pytest.mark.asyncio
async def test_track_then_decrement_restores_usage(tracker, instrument) -> None:
    await tracker.track("r1", instrument, 120.5, SpendPeriodType.CALENDAR, MARCH)
    before = await tracker.get_used("r1", instrument, SpendPeriodType.CALENDAR, MARCH)

    await tracker.track("r1", instrument, 64.25, SpendPeriodType.CALENDAR, MARCH)
    await tracker.decrement("r1", instrument, 64.25, SpendPeriodType.CALENDAR, MARCH)

    assert await tracker.get_used("r1", instrument, SpendPeriodType.CALENDAR, MARCH) == before == 120.5


@pytest.mark.asyncio
async def test_round_trip_is_exact_for_currency_amounts(tracker, instrument) -> None:
    await tracker.track("r1:spend", instrument, 0.1, on_date=MARCH)
    before = await tracker.get_used("r1:spend", instrument, on_date=MARCH)

    await tracker.track("r1:spend", instrument, 0.2, on_date=MARCH)
    after = await tracker.decrement("r1:spend", instrument, 0.2, on_date=MARCH)

    assert after == before == 0.1
    tracker.clear_cache()
    assert await tracker.get_used("r1:spend", instrument, on_date=MARCH) == 0.1


@pytest.mark.asyncio
async def test_remaining_is_floored_at_zero(tracker, instrument) -> None:
    await tracker.track("r1", instrument, 950, on_date=MARCH)

    assert await tracker.remaining("r1", instrument, 1000, on_date=MARCH) == 50
    assert await tracker.remaining("r1", instrument, 900, on_date=MARCH) == 0


@pytest.mark.asyncio
async def test_decrement_floors_at_zero(tracker, instrument) -> None:
    await tracker.track("r1", instrument, 10, on_date=MARCH)

    assert await tracker.decrement("r1", instrument, 25, on_date=MARCH) == 0
    assert await tracker.decrement("r2", instrument, 5, on_date=MARCH) == 0


@pytest.mark.asyncio
async def test_non_positive_delta_is_a_no_op(tracker, instrument) -> None:
    assert await tracker.track("r1", instrument, 0, on_date=MARCH) == 0
    assert await tracker.track("r1", instrument, -5, on_date=MARCH) == 0
    with pytest.raises(CalculationInputError):
        await tracker.track("r1", instrument, float("nan"), on_date=MARCH)


@pytest.mark.asyncio
async def test_reads_are_cached_and_writes_go_through(tracker, ledger, instrument) -> None:
    await tracker.get_used("r1", instrument, on_date=MARCH)
    await tracker.get_used("r1", instrument, on_date=MARCH)
    assert ledger.reads == 1

    await tracker.track("r1", instrument, 30, on_date=MARCH)
    assert await tracker.get_used("r1", instrument, on_date=MARCH) == 30
    assert ledger.reads == 1


@pytest.mark.asyncio
async def test_invalidation_forces_a_ledger_read(tracker, ledger, instrument) -> None:
    await tracker.track("r1", instrument, 30, on_date=MARCH)
    await tracker.track("r1:spend", instrument, 300, on_date=MARCH)

    assert tracker.invalidate_rule("r1") == 2
    assert await tracker.get_used("r1", instrument, on_date=MARCH) == 30
    assert ledger.reads == 1

    assert tracker.invalidate_instrument(instrument.id) >= 1
    assert len(tracker.cache) == 0


@pytest.mark.asyncio
async def test_statement_periods_are_tracked_separately(tracker, instrument) -> None:
    # instrument.statement_day is 15
    await tracker.track("r1", instrument, 100, SpendPeriodType.STATEMENT, date(2026, 3, 14))
    await tracker.track("r1", instrument, 40, SpendPeriodType.STATEMENT, date(2026, 3, 15))

    assert await tracker.get_used("r1", instrument, SpendPeriodType.STATEMENT, date(2026, 2, 20)) == 100
    assert await tracker.get_used("r1", instrument, SpendPeriodType.STATEMENT, date(2026, 4, 10)) == 40


@pytest.mark.asyncio
async def test_promotional_usage_accumulates_across_months(tracker, instrument) -> None:
    start = date(2025, 11, 15)
    await tracker.track("promo", instrument, 500, SpendPeriodType.PROMOTIONAL, date(2025, 11, 20), promo_start=start)
    await tracker.track("promo", instrument, 700, SpendPeriodType.PROMOTIONAL, date(2026, 1, 5), promo_start=start)

    assert await tracker.get_used("promo", instrument, SpendPeriodType.PROMOTIONAL, date(2025, 12, 1), promo_start=start) == 1200


@pytest.mark.asyncio
async def test_concurrent_tracking_loses_no_updates(tracker, instrument) -> None:
    await asyncio.gather(*(tracker.track("r1", instrument, 5, on_date=MARCH) for _ in range(50)))

    tracker.clear_cache()
    assert await tracker.get_used("r1", instrument, on_date=MARCH) == 250


@pytest.mark.asyncio
async def test_cap_usage_report_is_deduplicated_by_cap_group(tracker, instrument, make_rule) -> None:
    online = make_rule(rule_id="online", monthly_cap=1000, cap_group_id="wwmc")
    dining = make_rule(rule_id="dining", monthly_cap=1000, cap_group_id="wwmc")
    solo = make_rule(rule_id="solo", monthly_cap=200, monthly_spend_period_type="statement")
    uncapped = make_rule(rule_id="plain")

    await tracker.track_rule_usage(dining, instrument, 250, MARCH)
    await tracker.track_rule_usage(solo, instrument, 50, MARCH)

    usage = await tracker.get_cap_usage_for_rules([online, dining, solo, uncapped], instrument, on_date=MARCH)

    assert set(usage) == {"wwmc", "solo"}
    assert usage["wwmc"].used == 250
    assert usage["wwmc"].percentage == 25
    assert usage["wwmc"].rule_name == "2 rules shared cap"
    assert usage["solo"].period_start == date(2026, 3, 15)
    assert usage["solo"].period_end == date(2026, 4, 14)


@pytest.mark.asyncio
async def test_cap_usage_report_skips_finished_promotions(tracker, instrument, make_rule) -> None:
    promo = make_rule(rule_id="promo", monthly_cap=2000, monthly_spend_period_type="promotional",
                      promo_start_date=date(2025, 11, 15))
    promo = promo.model_copy(update={"valid_until": datetime(2026, 1, 31)})

    assert await tracker.get_cap_usage_for_rules([promo], instrument, on_date=MARCH) == {}
    assert "promo" in await tracker.get_cap_usage_for_rules([promo], instrument, on_date=date(2026, 1, 2))


@pytest.mark.asyncio
async def test_recalculate_overwrites_current_period(tracker, instrument, make_rule) -> None:
    points = make_rule(rule_id="points", monthly_cap=1000)
    spend = make_rule(rule_id="spend", monthly_cap=500, monthly_cap_type="spend_amount")
    await tracker.track_rule_usage(points, instrument, 900, MARCH)

    written = await tracker.recalculate([points, spend], instrument, bonus_points=320, spend_amount=75.5, on_date=MARCH)

    assert written == {"points": 320, "spend:spend": 75.5}
    tracker.clear_cache()
    assert await tracker.get_used_for_rule(points, instrument, MARCH) == 320
