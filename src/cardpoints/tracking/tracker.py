import logging
import math
from datetime import date, datetime
from decimal import Decimal

from cardpoints.domain.errors import CalculationInputError
from cardpoints.domain.models import (
    CapType,
    CapUsage,
    PaymentInstrument,
    RewardRule,
    SpendPeriodType,
    UsageKey,
)
from cardpoints.engine.rounding import to_decimal
from cardpoints.tracking.cache import SPEND_SUFFIX, UsageCache
from cardpoints.tracking.ledger import UsageLedger
from cardpoints.tracking.periods import effective_statement_day, period_bounds, resolve_period

logger = logging.getLogger(__name__)


def tracking_id_for(rule: RewardRule) -> str:
    """Ledger id for a rule: its cap group when shared, with a suffix for spend caps."""
    base = rule.reward.cap_group_id or rule.id
    if rule.reward.monthly_cap_type == CapType.SPEND_AMOUNT:
        return f"{base}{SPEND_SUFFIX}"
    return base


def apply_cap(potential: float, used: float, cap: float) -> tuple[float, float]:
    """Clamp ``potential`` to what is left under ``cap``.

    Returns ``(applied, remaining)`` where remaining is what is still
    available after ``applied`` is awarded.
    """
    if cap < 0:
        raise CalculationInputError(f"cap must not be negative, got {cap}")
    available = max(0.0, cap - used)
    applied = min(potential, available)
    remaining = max(0.0, cap - used - applied)
    return applied, remaining


def _as_usage(delta: float | Decimal) -> Decimal:
    if not math.isfinite(delta):
        raise CalculationInputError(f"usage delta must be finite, got {delta}")
    return to_decimal(delta)


class CapTracker:
    """Cumulative cap usage per rule or cap group, per period.

    Reads go through a :class:`UsageCache` and fall back to the ledger on a
    miss. Writes are atomic increments at the ledger whose result is then
    written into the cache. Usage is summed as exact decimals; the public
    methods hand it back as floats.
    """

    def __init__(self, ledger: UsageLedger, cache: UsageCache | None = None):
        self.ledger = ledger
        self.cache = cache if cache is not None else UsageCache()

    def _key(
        self,
        tracking_id: str,
        instrument: PaymentInstrument,
        period_type: SpendPeriodType,
        on_date: date | datetime,
        statement_day: int | None,
        promo_start: date | datetime | None,
    ) -> UsageKey:
        day = instrument.statement_day if statement_day is None else statement_day
        bucket = resolve_period(
            on_date,
            period_type,
            effective_statement_day(period_type, day),
            promo_start,
        )
        return UsageKey(
            user_id=instrument.user_id,
            tracking_id=tracking_id,
            instrument_id=instrument.id,
            period_type=bucket.period_type,
            period_year=bucket.year,
            period_month=bucket.month,
            statement_day=bucket.statement_day,
        )

    async def _read(self, key: UsageKey) -> Decimal:
        cached = self.cache.get(key)
        if cached is not None:
            return cached
        value = await self.ledger.get(key)
        used = value if value is not None else Decimal(0)
        self.cache.put(key, used)
        return used

    async def get_used(
        self,
        tracking_id: str,
        instrument: PaymentInstrument,
        period_type: SpendPeriodType = SpendPeriodType.CALENDAR,
        on_date: date | datetime | None = None,
        statement_day: int | None = None,
        promo_start: date | datetime | None = None,
    ) -> float:
        key = self._key(
            tracking_id, instrument, period_type, on_date or datetime.now(), statement_day, promo_start
        )
        return float(await self._read(key))

    async def track(
        self,
        tracking_id: str,
        instrument: PaymentInstrument,
        delta: float,
        period_type: SpendPeriodType = SpendPeriodType.CALENDAR,
        on_date: date | datetime | None = None,
        statement_day: int | None = None,
        promo_start: date | datetime | None = None,
    ) -> float:
        amount = _as_usage(delta)
        key = self._key(
            tracking_id, instrument, period_type, on_date or datetime.now(), statement_day, promo_start
        )
        if amount <= 0:
            return float(await self._read(key))

        used = await self.ledger.add(key, amount)
        self.cache.put(key, used)
        logger.info("Tracked %s on %s for %s, total %s", delta, tracking_id, instrument.id, used)
        return float(used)

    async def decrement(
        self,
        tracking_id: str,
        instrument: PaymentInstrument,
        delta: float,
        period_type: SpendPeriodType = SpendPeriodType.CALENDAR,
        on_date: date | datetime | None = None,
        statement_day: int | None = None,
        promo_start: date | datetime | None = None,
    ) -> float:
        amount = _as_usage(delta)
        key = self._key(
            tracking_id, instrument, period_type, on_date or datetime.now(), statement_day, promo_start
        )
        if amount <= 0:
            return float(await self._read(key))

        used = await self.ledger.add(key, -amount, floor_at_zero=True)
        self.cache.put(key, used)
        logger.info("Decremented %s on %s for %s, total %s", delta, tracking_id, instrument.id, used)
        return float(used)

    async def remaining(
        self,
        tracking_id: str,
        instrument: PaymentInstrument,
        cap: float,
        period_type: SpendPeriodType = SpendPeriodType.CALENDAR,
        on_date: date | datetime | None = None,
        statement_day: int | None = None,
        promo_start: date | datetime | None = None,
    ) -> float:
        used = await self.get_used(tracking_id, instrument, period_type, on_date, statement_day, promo_start)
        return max(0.0, cap - used)

    async def get_used_for_rule(
        self, rule: RewardRule, instrument: PaymentInstrument, on_date: date | datetime | None = None
    ) -> float:
        return await self.get_used(
            tracking_id_for(rule),
            instrument,
            rule.reward.monthly_spend_period_type,
            on_date,
            promo_start=rule.promo_anchor,
        )

    async def track_rule_usage(
        self,
        rule: RewardRule,
        instrument: PaymentInstrument,
        value: float,
        on_date: date | datetime | None = None,
    ) -> float:
        return await self.track(
            tracking_id_for(rule),
            instrument,
            value,
            rule.reward.monthly_spend_period_type,
            on_date,
            promo_start=rule.promo_anchor,
        )

    async def decrement_rule_usage(
        self,
        rule: RewardRule,
        instrument: PaymentInstrument,
        value: float,
        on_date: date | datetime | None = None,
    ) -> float:
        return await self.decrement(
            tracking_id_for(rule),
            instrument,
            value,
            rule.reward.monthly_spend_period_type,
            on_date,
            promo_start=rule.promo_anchor,
        )

    async def get_cap_usage_for_rules(
        self,
        rules: list[RewardRule],
        instrument: PaymentInstrument,
        statement_day: int | None = None,
        on_date: date | datetime | None = None,
    ) -> dict[str, CapUsage]:
        """Current usage of every capped rule, one entry per cap group.

        Meant for progress displays; the cap applied to a calculation is
        always read fresh by the reward service.
        """
        today = on_date or datetime.now()
        usage: dict[str, CapUsage] = {}

        for rule in rules:
            config = rule.reward
            if config.monthly_cap is None:
                continue

            identifier = config.cap_group_id or rule.id
            if identifier in usage:
                continue

            period_type = config.monthly_spend_period_type
            if period_type == SpendPeriodType.PROMOTIONAL and not rule.is_valid_on(today):
                continue

            key = self._key(tracking_id_for(rule), instrument, period_type, today, statement_day, rule.promo_anchor)
            used = float(await self._read(key))
            bucket = resolve_period(today, period_type, key.statement_day, rule.promo_anchor)
            start, end = period_bounds(bucket, promo_end=rule.valid_until, promo_start=rule.promo_anchor)

            name = rule.name
            if config.cap_group_id:
                members = sum(1 for other in rules if other.reward.cap_group_id == config.cap_group_id)
                if members > 1:
                    name = f"{members} rules shared cap"
            cap = config.monthly_cap

            usage[identifier] = CapUsage(
                identifier=identifier,
                rule_name=name,
                used=used,
                cap=cap,
                cap_type=config.monthly_cap_type,
                period_type=period_type,
                period_start=start,
                period_end=end,
                valid_until=rule.valid_until,
                percentage=min(100.0, used / cap * 100) if cap else 100.0,
            )

        return usage

    async def recalculate(
        self,
        rules: list[RewardRule],
        instrument: PaymentInstrument,
        bonus_points: float,
        spend_amount: float = 0.0,
        on_date: date | datetime | None = None,
    ) -> dict[str, float]:
        """Overwrite the current period's usage from totals recomputed off transactions.

        Used to repair the ledger when it has drifted from the recorded
        transactions. Returns the value written per tracking id.
        """
        today = on_date or datetime.now()
        written: dict[str, float] = {}

        for rule in rules:
            if rule.reward.monthly_cap is None:
                continue
            tracking_id = tracking_id_for(rule)
            if tracking_id in written:
                continue

            value = spend_amount if rule.reward.monthly_cap_type == CapType.SPEND_AMOUNT else bonus_points
            amount = max(Decimal(0), _as_usage(value))
            key = self._key(
                tracking_id, instrument, rule.reward.monthly_spend_period_type, today, None, rule.promo_anchor
            )
            stored = await self.ledger.set(key, amount)
            self.cache.put(key, stored)
            written[tracking_id] = float(stored)
            logger.info("Recalculated usage for %s on %s: %s", tracking_id, instrument.id, written[tracking_id])

        return written

    def invalidate_instrument(self, instrument_id: str) -> int:
        return self.cache.invalidate_instrument(instrument_id)

    def invalidate_rule(self, rule: RewardRule | str) -> int:
        if isinstance(rule, RewardRule):
            dropped = self.cache.invalidate_tracking_id(rule.id)
            if rule.reward.cap_group_id:
                dropped += self.cache.invalidate_tracking_id(rule.reward.cap_group_id)
            return dropped
        return self.cache.invalidate_tracking_id(rule)

    def clear_cache(self) -> None:
        self.cache.clear()
