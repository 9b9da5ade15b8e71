from functools import lru_cache

from sqlalchemy.ext.asyncio import create_async_engine

from cardpoints.config import settings
from cardpoints.repository.rule_store import JsonRuleRepository
from cardpoints.service.reward_service import RewardService
from cardpoints.tracking.ledger import SqlUsageLedger
from cardpoints.tracking.tracker import CapTracker


@lru_cache
def get_rule_repository() -> JsonRuleRepository:
    return JsonRuleRepository(settings.rule_catalog_file)


@lru_cache
def get_usage_ledger() -> SqlUsageLedger:
    engine = create_async_engine(settings.ledger_database_url, echo=settings.ledger_echo)
    return SqlUsageLedger(engine)


@lru_cache
def get_cap_tracker() -> CapTracker:
    return CapTracker(get_usage_ledger())


@lru_cache
def get_reward_service() -> RewardService:
    return RewardService(
        get_rule_repository(),
        get_cap_tracker(),
        default_points_currency=settings.default_points_currency,
    )
