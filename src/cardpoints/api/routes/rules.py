from fastapi import APIRouter, Depends, HTTPException, Response

from cardpoints.api.dependencies import get_cap_tracker, get_rule_repository
from cardpoints.domain.errors import LookupFailure
from cardpoints.domain.models import RewardRule
from cardpoints.repository.catalog import CardType
from cardpoints.repository.rule_store import JsonRuleRepository, new_rule_id
from cardpoints.schemas.requests import RuleWriteRequest
from cardpoints.tracking.tracker import CapTracker

router = APIRouter(tags=["rules"])


@router.get("/card-types", response_model=list[CardType])
def card_types(
    issuer: str | None = None,
    repository: JsonRuleRepository = Depends(get_rule_repository),
) -> list[CardType]:
    try:
        catalog = repository.catalog
    except LookupFailure as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    return catalog.all() if issuer is None else catalog.by_issuer(issuer)


@router.get("/rules", response_model=list[RewardRule])
async def list_rules(
    card_type_id: str,
    repository: JsonRuleRepository = Depends(get_rule_repository),
) -> list[RewardRule]:
    try:
        return await repository.get_rules_for_card_type(card_type_id)
    except LookupFailure as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc


@router.post("/rules", response_model=RewardRule, status_code=201)
async def create_rule(
    request: RuleWriteRequest,
    repository: JsonRuleRepository = Depends(get_rule_repository),
) -> RewardRule:
    try:
        rule = RewardRule(id=new_rule_id(), **request.model_dump())
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    return await repository.create_rule(rule)


@router.put("/rules/{rule_id}", response_model=RewardRule)
async def update_rule(
    rule_id: str,
    request: RuleWriteRequest,
    repository: JsonRuleRepository = Depends(get_rule_repository),
    tracker: CapTracker = Depends(get_cap_tracker),
) -> RewardRule:
    existing = await repository.get_rule(rule_id)
    if existing is None:
        raise HTTPException(status_code=404, detail=f"Unknown rule: {rule_id}")
    try:
        rule = RewardRule(id=rule_id, **request.model_dump())
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc

    updated = await repository.update_rule(rule)
    tracker.invalidate_rule(existing)
    tracker.invalidate_rule(updated)
    return updated


@router.delete("/rules/{rule_id}", status_code=204)
async def delete_rule(
    rule_id: str,
    repository: JsonRuleRepository = Depends(get_rule_repository),
    tracker: CapTracker = Depends(get_cap_tracker),
) -> Response:
    existing = await repository.get_rule(rule_id)
    if existing is None:
        raise HTTPException(status_code=404, detail=f"Unknown rule: {rule_id}")
    await repository.delete_rule(rule_id)
    tracker.invalidate_rule(existing)
    return Response(status_code=204)
