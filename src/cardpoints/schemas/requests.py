from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field

from cardpoints.domain.models import PaymentInstrument, RewardConfig, RuleCondition


class UsageUpdateRequest(BaseModel):
    rule_id: str
    instrument: PaymentInstrument
    value: float = Field(ge=0)
    date: datetime | None = None

    model_config = ConfigDict(allow_inf_nan=False)


class CapUsageRequest(BaseModel):
    instrument: PaymentInstrument
    date: datetime | None = None


class RuleWriteRequest(BaseModel):
    card_type_id: str
    name: str
    description: str = ""
    enabled: bool = True
    priority: int = 0
    conditions: list[RuleCondition] = Field(default_factory=list)
    reward: RewardConfig
    valid_from: datetime | None = None
    valid_until: datetime | None = None
