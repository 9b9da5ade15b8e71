import shutil
from datetime import datetime
from pathlib import Path

import pytest

from cardpoints.domain.models import (
    CalculationInput,
    PaymentInstrument,
    RewardConfig,
    RewardRule,
    RuleCondition,
)

PROJECT_ROOT = Path(__file__).resolve().parents[1]
SAMPLE_CATALOG = PROJECT_ROOT / "data" / "cards" / "sample_catalog.json"

UOB_PLATINUM = "0d6f8a1c2b7e4f4f9a3e5b1c7d2e9f01"
OCBC_REWARDS = "5b2e7c9d1a3f4e6b8c0d2e4f6a8b0c12"
UOB_SIGNATURE = "9e1d3c5b7a9f4b2d8e6c4a2f0e8d6c23"
DBS_WWMC = "3a5c7e9b1d2f4a6c8e0b2d4f6a8c0e34"


@pytest.fixture
def instrument() -> PaymentInstrument:
    return PaymentInstrument(id="pm-1", card_type_id="card-a", user_id="user-1", statement_day=15)


@pytest.fixture
def make_rule():
    counter = iter(range(1, 1000))

    def _make(
        conditions: list[dict] | None = None,
        priority: int = 0,
        card_type_id: str = "card-a",
        rule_id: str | None = None,
        **reward,
    ) -> RewardRule:
        return RewardRule(
            id=rule_id or f"rule-{next(counter)}",
            card_type_id=card_type_id,
            name=rule_id or "test rule",
            priority=priority,
            conditions=[RuleCondition(**condition) for condition in conditions or []],
            reward=RewardConfig(**reward),
        )

    return _make


@pytest.fixture
def make_input(instrument):
    def _make(amount: float = 100.0, **fields) -> CalculationInput:
        fields.setdefault("payment_method", instrument)
        fields.setdefault("date", datetime(2026, 3, 20, 12, 0))
        return CalculationInput(amount=amount, **fields)

    return _make


@pytest.fixture
def catalog_file(tmp_path) -> Path:
    target = tmp_path / "catalog.json"
    shutil.copy(SAMPLE_CATALOG, target)
    return target
