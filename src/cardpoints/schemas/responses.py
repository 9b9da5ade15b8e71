from pydantic import BaseModel

from cardpoints.domain.models import CapUsage


class UsageResponse(BaseModel):
    rule_id: str
    tracking_id: str
    used: float


class CapUsageResponse(BaseModel):
    instrument_id: str
    caps: list[CapUsage]
