"""Conversion between stored rule records and :class:`RewardRule`.

Two record shapes are accepted: the nested shape produced by
``RewardRule.model_dump`` and the flat, column-per-field shape used by the
``reward_rules`` table, where conditions and tiers may be JSON strings.
Records from older catalogs are normalized on the way in.
"""

import json
import logging
from typing import Any

from pydantic import ValidationError

from cardpoints.domain.errors import ConfigurationError
from cardpoints.domain.models import RewardConfig, RewardRule

logger = logging.getLogger(__name__)

REWARD_FIELDS = tuple(RewardConfig.model_fields)

_LEGACY_PERIOD_TYPES = {
    "statement_month": "statement",
    "calendar_month": "calendar",
    "promotional_period": "promotional",
}


def _parse_json_list(value: Any, field: str) -> list:
    if value is None or value == "":
        return []
    if isinstance(value, str):
        try:
            value = json.loads(value)
        except json.JSONDecodeError as exc:
            raise ConfigurationError(f"'{field}' is not valid JSON") from exc
    if not isinstance(value, list):
        raise ConfigurationError(f"'{field}' must be a list")
    return value


def normalize_condition(condition: dict) -> dict:
    """Rewrite the legacy ``online`` condition type as a transaction_type condition."""
    if condition.get("type") != "online":
        return condition

    normalized = {**condition, "type": "transaction_type"}
    if condition.get("operation") == "equals":
        flag = str((condition.get("values") or [""])[0]).lower()
        if flag == "true":
            normalized.update(operation="include", values=["online"])
        elif flag == "false":
            normalized.update(operation="exclude", values=["online"])
    return normalized


def _normalize_reward(reward: dict) -> dict:
    reward = {key: value for key, value in reward.items() if value is not None}

    if reward.get("amount_rounding_strategy") == "floor5":
        reward["amount_rounding_strategy"] = "floor_to_block"
        reward["block_size"] = 5

    period = reward.get("monthly_spend_period_type")
    if period in _LEGACY_PERIOD_TYPES:
        reward["monthly_spend_period_type"] = _LEGACY_PERIOD_TYPES[period]

    reward["bonus_tiers"] = _parse_json_list(reward.get("bonus_tiers"), "bonus_tiers")
    return reward


def rule_from_record(record: dict) -> RewardRule:
    """Build a rule from a nested or flat record.

    Raises :class:`ConfigurationError` when required reward fields are missing
    or any value fails validation.
    """
    if not isinstance(record, dict):
        raise ConfigurationError("rule record must be an object")

    for field in ("id", "card_type_id", "name"):
        if not record.get(field):
            raise ConfigurationError(f"rule record is missing '{field}'")

    if isinstance(record.get("reward"), dict):
        reward = dict(record["reward"])
    else:
        reward = {field: record[field] for field in REWARD_FIELDS if field in record}
        if "calculation_method" not in reward:
            raise ConfigurationError(f"rule {record['id']} has no reward configuration")

    conditions = [
        normalize_condition(condition)
        for condition in _parse_json_list(record.get("conditions"), "conditions")
    ]

    payload = {
        key: value
        for key, value in record.items()
        if key not in REWARD_FIELDS and key not in ("reward", "conditions") and value is not None
    }
    payload["conditions"] = conditions
    payload["reward"] = _normalize_reward(reward)

    try:
        return RewardRule.model_validate(payload)
    except ValidationError as exc:
        raise ConfigurationError(f"rule {record['id']} is malformed: {exc}") from exc


def rule_to_record(rule: RewardRule) -> dict:
    """Flat, JSON-serializable record for ``rule``."""
    data = rule.model_dump(mode="json")
    reward = data.pop("reward")
    data.update(reward)
    return data
