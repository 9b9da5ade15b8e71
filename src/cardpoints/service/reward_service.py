import logging
import math
from datetime import datetime

from cardpoints.domain.errors import LookupFailure
from cardpoints.domain.models import (
    CalculationInput,
    CalculationResult,
    CapScope,
    CapType,
    PaymentInstrument,
    RewardRule,
    TransactionType,
)
from cardpoints.engine.calculator import PointsBreakdown, bonus_for_amount, calculate_points
from cardpoints.engine.conditions import is_applicable
from cardpoints.engine.rounding import to_decimal
from cardpoints.engine.selectors import select_rule
from cardpoints.repository.rule_store import RuleRepository
from cardpoints.tracking.tracker import CapTracker, apply_cap, tracking_id_for

logger = logging.getLogger(__name__)

CAP_REACHED = "Monthly bonus points cap reached"
SPEND_CAP_REACHED = "Monthly bonus spend cap reached"


class RewardService:
    """Works out the points a transaction earns from the card's rule catalog.

    The service only reads cap usage. Recording it is left to the caller,
    once the transaction is stored, through the :class:`CapTracker`.
    """

    def __init__(
        self,
        rule_repository: RuleRepository,
        tracker: CapTracker,
        default_points_currency: str = "points",
    ):
        self.rule_repository = rule_repository
        self.tracker = tracker
        self.default_points_currency = default_points_currency

    def _points_currency(self, tx: CalculationInput) -> str:
        return tx.payment_method.points_currency or self.default_points_currency

    def _empty_result(self, tx: CalculationInput, message: str) -> CalculationResult:
        return CalculationResult(points_currency=self._points_currency(tx), messages=[message])

    async def _load_rules(self, tx: CalculationInput) -> list[RewardRule] | None:
        card_type_id = tx.payment_method.card_type_id
        try:
            rules = await self.rule_repository.get_rules_for_card_type(card_type_id)
        except LookupFailure:
            logger.warning("Rule lookup failed for card type %s", card_type_id, exc_info=True)
            return None

        logger.info(
            "Retrieved %d rules (%d enabled) for card type %s",
            len(rules),
            sum(1 for rule in rules if rule.enabled),
            card_type_id,
        )
        return rules

    def applicable_rules(self, rules: list[RewardRule], tx: CalculationInput) -> list[RewardRule]:
        return [
            rule
            for rule in rules
            if rule.enabled and rule.is_valid_on(tx.date) and is_applicable(rule, tx)
        ]

    async def calculate_rewards(self, tx: CalculationInput) -> CalculationResult:
        rules = await self._load_rules(tx)
        if rules is None:
            return self._empty_result(tx, "Reward rules could not be loaded for this payment method")
        if not rules:
            logger.warning("No reward rules for card type %s", tx.payment_method.card_type_id)
            return self._empty_result(tx, "No reward rules found for this payment method")

        applicable = self.applicable_rules(rules, tx)
        rule = select_rule(applicable)
        if rule is None:
            return self._empty_result(tx, "No applicable reward rules found for this transaction")

        result = await self._apply_rule(rule, tx)
        logger.info(
            "Applied rule %s (%s) priority=%d: base=%d bonus=%d total=%d",
            rule.id,
            rule.name,
            rule.priority,
            result.base_points,
            result.bonus_points,
            result.total_points,
        )
        return result

    async def _used_for_rule(self, rule: RewardRule, tx: CalculationInput) -> float | None:
        if tx.used_bonus_points is not None:
            return tx.used_bonus_points
        try:
            return await self.tracker.get_used_for_rule(rule, tx.payment_method, tx.date)
        except LookupFailure:
            logger.warning("Cap usage unavailable for rule %s", rule.id, exc_info=True)
            return None

    async def _apply_rule(self, rule: RewardRule, tx: CalculationInput) -> CalculationResult:
        config = rule.reward
        breakdown = calculate_points(config, tx)
        base, bonus = breakdown.base_points, breakdown.bonus_points
        messages: list[str] = []

        min_spend_met = True
        if (
            config.monthly_min_spend is not None
            and tx.monthly_spend is not None
            and tx.monthly_spend < config.monthly_min_spend
        ):
            min_spend_met = False
            bonus = 0
            messages.append(f"Monthly minimum spend of {config.monthly_min_spend:g} not met")

        tracking_id = None
        tracked_value = 0.0
        remaining = None

        if config.monthly_cap is not None:
            tracking_id = tracking_id_for(rule)
            used = await self._used_for_rule(rule, tx)
            if used is None:
                bonus = 0
                messages.append("Cap usage could not be read; bonus points withheld")
            elif config.monthly_cap_type == CapType.SPEND_AMOUNT:
                bonus, remaining, tracked_value = self._clamp_spend(
                    rule, breakdown, bonus, used, messages
                )
                if not min_spend_met:
                    # no bonus was earned, so none of this spend counts toward the cap
                    tracked_value = 0.0
            elif config.cap_scope == CapScope.COMBINED:
                base, bonus, remaining = self._clamp_combined(config.monthly_cap, base, bonus, used, messages)
                tracked_value = float(base + bonus)
            else:
                bonus, remaining = self._clamp_bonus(config.monthly_cap, bonus, used, messages)
                tracked_value = float(bonus)

        return CalculationResult(
            total_points=base + bonus,
            base_points=base,
            bonus_points=bonus,
            points_currency=config.points_currency or self._points_currency(tx),
            remaining_monthly_bonus_points=remaining,
            min_spend_met=min_spend_met,
            applied_rule=rule,
            applied_tier=breakdown.tier,
            tracking_id=tracking_id,
            tracked_value=tracked_value,
            messages=messages,
        )

    @staticmethod
    def _clamp_bonus(cap: float, bonus: int, used: float, messages: list[str]) -> tuple[int, float]:
        applied, _ = apply_cap(bonus, used, cap)
        capped = math.floor(applied)
        remaining = max(0.0, cap - used - capped)

        if bonus > 0 and cap - used <= 0:
            messages.append(CAP_REACHED)
        elif capped < bonus:
            messages.append(f"Bonus points capped at {capped} due to monthly limit")
        return capped, remaining

    @staticmethod
    def _clamp_combined(
        cap: float, base: int, bonus: int, used: float, messages: list[str]
    ) -> tuple[int, int, float]:
        available = max(0.0, cap - used)
        capped_bonus = math.floor(min(bonus, available))
        capped_base = math.floor(min(base, available - capped_bonus))
        remaining = max(0.0, available - capped_bonus - capped_base)

        if base + bonus > 0 and available <= 0:
            messages.append(CAP_REACHED)
        elif capped_bonus + capped_base < base + bonus:
            messages.append(
                f"Points capped at {capped_base + capped_bonus} due to monthly limit"
            )
        return capped_base, capped_bonus, remaining

    @staticmethod
    def _clamp_spend(
        rule: RewardRule,
        breakdown: PointsBreakdown,
        bonus: int,
        used: float,
        messages: list[str],
    ) -> tuple[int, float, float]:
        config = rule.reward
        spend = float(breakdown.block_amount)
        applied_spend, remaining = apply_cap(spend, used, config.monthly_cap)

        if applied_spend < spend and bonus != 0:
            bonus = bonus_for_amount(config, to_decimal(applied_spend), breakdown.tier)
            if applied_spend <= 0:
                messages.append(SPEND_CAP_REACHED)
            else:
                messages.append(f"Bonus spend capped at {applied_spend:g} due to monthly limit")
        return bonus, remaining, applied_spend

    async def simulate_rewards(
        self,
        amount: float,
        currency: str,
        instrument: PaymentInstrument,
        mcc: str | None = None,
        merchant_name: str | None = None,
        is_online: bool = False,
        is_contactless: bool = False,
    ) -> CalculationResult:
        """What a purchase made right now would earn."""
        tx = CalculationInput(
            amount=amount,
            currency=currency,
            payment_method=instrument,
            mcc=mcc,
            merchant_name=merchant_name,
            transaction_type=TransactionType.PURCHASE,
            is_online=is_online,
            is_contactless=is_contactless,
            date=datetime.now(),
        )
        return await self.calculate_rewards(tx)
