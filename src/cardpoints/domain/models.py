from datetime import date, datetime
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field, model_validator


class ConditionType(str, Enum):
    MCC = "mcc"
    TRANSACTION_TYPE = "transaction_type"
    CURRENCY = "currency"
    MERCHANT = "merchant"
    AMOUNT = "amount"
    CATEGORY = "category"


class ConditionOperation(str, Enum):
    INCLUDE = "include"
    EXCLUDE = "exclude"
    EQUALS = "equals"
    GREATER_THAN = "greater_than"
    LESS_THAN = "less_than"
    RANGE = "range"


class CalculationMethod(str, Enum):
    STANDARD = "standard"
    TIERED = "tiered"
    FLAT_RATE = "flat_rate"


class FlatRateMode(str, Enum):
    PER_TRANSACTION = "per_transaction"
    PER_UNIT = "per_unit"


class PointsRounding(str, Enum):
    FLOOR = "floor"
    CEILING = "ceiling"
    NEAREST = "nearest"


class AmountRounding(str, Enum):
    FLOOR = "floor"
    CEILING = "ceiling"
    NEAREST = "nearest"
    FLOOR_TO_BLOCK = "floor_to_block"
    NONE = "none"


class CapType(str, Enum):
    BONUS_POINTS = "bonus_points"
    SPEND_AMOUNT = "spend_amount"


class CapScope(str, Enum):
    BONUS = "bonus"
    COMBINED = "combined"


class SpendPeriodType(str, Enum):
    CALENDAR = "calendar"
    STATEMENT = "statement"
    PROMOTIONAL = "promotional"


class TransactionType(str, Enum):
    PURCHASE = "purchase"
    REFUND = "refund"
    ADJUSTMENT = "adjustment"
    ONLINE = "online"
    CONTACTLESS = "contactless"
    IN_STORE = "in_store"


class RuleCondition(BaseModel):
    type: ConditionType
    operation: ConditionOperation
    values: list[str | float] = Field(default_factory=list)
    display_name: str | None = None


class BonusTier(BaseModel):
    multiplier: float
    min_amount: float | None = None
    max_amount: float | None = None
    min_spend: float | None = None
    max_spend: float | None = None
    priority: int = 0
    name: str | None = None
    description: str | None = None

    @property
    def has_amount_bounds(self) -> bool:
        return self.min_amount is not None or self.max_amount is not None

    @property
    def has_spend_bounds(self) -> bool:
        return self.min_spend is not None or self.max_spend is not None


class RewardConfig(BaseModel):
    calculation_method: CalculationMethod = CalculationMethod.STANDARD
    base_multiplier: float = 1.0
    bonus_multiplier: float = 0.0
    points_rounding_strategy: PointsRounding = PointsRounding.FLOOR
    amount_rounding_strategy: AmountRounding = AmountRounding.NONE
    block_size: float = Field(default=1.0, gt=0)
    bonus_tiers: list[BonusTier] = Field(default_factory=list)
    flat_rate_mode: FlatRateMode = FlatRateMode.PER_TRANSACTION
    monthly_cap: float | None = Field(default=None, ge=0)
    monthly_cap_type: CapType = CapType.BONUS_POINTS
    monthly_spend_period_type: SpendPeriodType = SpendPeriodType.CALENDAR
    cap_scope: CapScope = CapScope.BONUS
    cap_group_id: str | None = None
    monthly_min_spend: float | None = Field(default=None, ge=0)
    promo_start_date: date | None = None
    points_currency: str = "points"

    model_config = ConfigDict(allow_inf_nan=False)

    @property
    def has_cap(self) -> bool:
        return self.monthly_cap is not None


class RewardRule(BaseModel):
    id: str
    card_type_id: str
    name: str
    description: str = ""
    enabled: bool = True
    priority: int = 0
    conditions: list[RuleCondition] = Field(default_factory=list)
    reward: RewardConfig
    valid_from: datetime | None = None
    valid_until: datetime | None = None
    created_at: datetime = Field(default_factory=datetime.now)
    updated_at: datetime = Field(default_factory=datetime.now)

    @model_validator(mode="after")
    def _check_validity_window(self) -> "RewardRule":
        if self.valid_from and self.valid_until and self.valid_until < self.valid_from:
            raise ValueError("valid_until must not be earlier than valid_from")
        if (
            self.reward.monthly_spend_period_type == SpendPeriodType.PROMOTIONAL
            and self.promo_anchor is None
        ):
            raise ValueError("promotional caps need promo_start_date or valid_from")
        return self

    @property
    def promo_anchor(self) -> date | None:
        if self.reward.promo_start_date is not None:
            return self.reward.promo_start_date
        if self.valid_from is not None:
            return self.valid_from.date()
        return None

    def is_valid_on(self, when: date) -> bool:
        day = when.date() if isinstance(when, datetime) else when
        if self.valid_from is not None and day < self.valid_from.date():
            return False
        if self.valid_until is not None and day > self.valid_until.date():
            return False
        return True


class PaymentInstrument(BaseModel):
    id: str
    card_type_id: str
    user_id: str = "default"
    statement_day: int = Field(default=1, ge=1, le=31)
    points_currency: str | None = None


class CalculationInput(BaseModel):
    amount: float
    currency: str = "USD"
    payment_method: PaymentInstrument
    mcc: str | None = None
    merchant_name: str | None = None
    category: str | None = None
    transaction_type: TransactionType = TransactionType.PURCHASE
    is_online: bool = False
    is_contactless: bool = False
    date: datetime = Field(default_factory=datetime.now)
    monthly_spend: float | None = Field(default=None, ge=0)
    used_bonus_points: float | None = Field(default=None, ge=0)

    model_config = ConfigDict(allow_inf_nan=False)


class CalculationResult(BaseModel):
    total_points: int = 0
    base_points: int = 0
    bonus_points: int = 0
    points_currency: str = "points"
    remaining_monthly_bonus_points: float | None = None
    min_spend_met: bool = True
    applied_rule: RewardRule | None = None
    applied_tier: BonusTier | None = None
    tracking_id: str | None = None
    tracked_value: float = 0
    messages: list[str] = Field(default_factory=list)


class UsageKey(BaseModel):
    user_id: str
    tracking_id: str
    instrument_id: str
    period_type: SpendPeriodType
    period_year: int
    period_month: int = Field(ge=1, le=12)
    statement_day: int = Field(default=1, ge=1, le=31)

    model_config = ConfigDict(frozen=True)


class CapUsage(BaseModel):
    identifier: str
    rule_name: str
    used: float
    cap: float
    cap_type: CapType
    period_type: SpendPeriodType
    period_start: date
    period_end: date
    valid_until: datetime | None = None
    percentage: float
