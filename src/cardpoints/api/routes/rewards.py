from fastapi import APIRouter, Depends, HTTPException

from cardpoints.api.dependencies import get_cap_tracker, get_reward_service, get_rule_repository
from cardpoints.domain.errors import CalculationInputError, LookupFailure
from cardpoints.domain.models import CalculationInput, CalculationResult, RewardRule
from cardpoints.repository.rule_store import RuleRepository
from cardpoints.schemas.requests import CapUsageRequest, UsageUpdateRequest
from cardpoints.schemas.responses import CapUsageResponse, UsageResponse
from cardpoints.service.reward_service import RewardService
from cardpoints.tracking.tracker import CapTracker, tracking_id_for

router = APIRouter(prefix="/rewards", tags=["rewards"])


@router.post("/calculate", response_model=CalculationResult)
async def calculate(
    request: CalculationInput,
    service: RewardService = Depends(get_reward_service),
) -> CalculationResult:
    return await service.calculate_rewards(request)


async def _capped_rule(repository: RuleRepository, rule_id: str) -> RewardRule:
    rule = await repository.get_rule(rule_id)
    if rule is None:
        raise HTTPException(status_code=404, detail=f"Unknown rule: {rule_id}")
    if rule.reward.monthly_cap is None:
        raise HTTPException(status_code=400, detail=f"Rule {rule_id} has no cap to track")
    return rule


@router.post("/usage/track", response_model=UsageResponse)
async def track_usage(
    request: UsageUpdateRequest,
    repository: RuleRepository = Depends(get_rule_repository),
    tracker: CapTracker = Depends(get_cap_tracker),
) -> UsageResponse:
    rule = await _capped_rule(repository, request.rule_id)
    try:
        used = await tracker.track_rule_usage(rule, request.instrument, request.value, request.date)
    except (CalculationInputError, LookupFailure) as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    return UsageResponse(rule_id=rule.id, tracking_id=tracking_id_for(rule), used=used)


@router.post("/usage/decrement", response_model=UsageResponse)
async def decrement_usage(
    request: UsageUpdateRequest,
    repository: RuleRepository = Depends(get_rule_repository),
    tracker: CapTracker = Depends(get_cap_tracker),
) -> UsageResponse:
    rule = await _capped_rule(repository, request.rule_id)
    try:
        used = await tracker.decrement_rule_usage(rule, request.instrument, request.value, request.date)
    except (CalculationInputError, LookupFailure) as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    return UsageResponse(rule_id=rule.id, tracking_id=tracking_id_for(rule), used=used)


@router.post("/caps", response_model=CapUsageResponse)
async def cap_usage(
    request: CapUsageRequest,
    repository: RuleRepository = Depends(get_rule_repository),
    tracker: CapTracker = Depends(get_cap_tracker),
) -> CapUsageResponse:
    try:
        rules = await repository.get_rules_for_card_type(request.instrument.card_type_id)
        usage = await tracker.get_cap_usage_for_rules(rules, request.instrument, on_date=request.date)
    except LookupFailure as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    return CapUsageResponse(instrument_id=request.instrument.id, caps=list(usage.values()))
