import logging

from cardpoints.domain.models import (
    CalculationInput,
    ConditionOperation,
    ConditionType,
    RewardRule,
    RuleCondition,
)

logger = logging.getLogger(__name__)

Op = ConditionOperation


def _as_strings(values: list, upper: bool = False, lower: bool = False) -> list[str]:
    items = []
    for value in values:
        text = str(value).strip()
        if isinstance(value, float) and value.is_integer():
            text = str(int(value))
        if upper:
            text = text.upper()
        if lower:
            text = text.lower()
        items.append(text)
    return items


def _as_numbers(values: list) -> list[float] | None:
    try:
        return [float(value) for value in values]
    except (TypeError, ValueError):
        return None


def _membership(condition: RuleCondition, value: str | None, values: list[str]) -> bool:
    if value is None:
        return condition.operation == Op.EXCLUDE

    if condition.operation == Op.INCLUDE:
        return value in values
    if condition.operation == Op.EXCLUDE:
        return value not in values
    if condition.operation == Op.EQUALS:
        return bool(values) and values[0] == value
    return False


def _mcc(condition: RuleCondition, tx: CalculationInput) -> bool:
    mcc = tx.mcc.strip() if tx.mcc else None
    return _membership(condition, mcc or None, _as_strings(condition.values))


def _currency(condition: RuleCondition, tx: CalculationInput) -> bool:
    currency = tx.currency.upper() if tx.currency else None
    return _membership(condition, currency, _as_strings(condition.values, upper=True))


def _category(condition: RuleCondition, tx: CalculationInput) -> bool:
    category = tx.category.lower() if tx.category else None
    return _membership(condition, category, _as_strings(condition.values, lower=True))


def _merchant(condition: RuleCondition, tx: CalculationInput) -> bool:
    if not tx.merchant_name:
        return condition.operation == Op.EXCLUDE

    merchant = tx.merchant_name.lower()
    values = [value for value in _as_strings(condition.values, lower=True) if value]

    if condition.operation == Op.INCLUDE:
        return any(value in merchant for value in values)
    if condition.operation == Op.EXCLUDE:
        return not any(value in merchant for value in values)
    if condition.operation == Op.EQUALS:
        return bool(values) and merchant == values[0]
    return False


def _matches_transaction_type(kind: str, tx: CalculationInput) -> bool:
    if kind == "online":
        return tx.is_online
    if kind == "contactless":
        return tx.is_contactless
    if kind == "in_store":
        return not tx.is_online
    return tx.transaction_type.value == kind


def _transaction_type(condition: RuleCondition, tx: CalculationInput) -> bool:
    values = _as_strings(condition.values, lower=True)

    if condition.operation == Op.INCLUDE:
        return any(_matches_transaction_type(kind, tx) for kind in values)
    if condition.operation == Op.EXCLUDE:
        return not any(_matches_transaction_type(kind, tx) for kind in values)
    if condition.operation == Op.EQUALS:
        return bool(values) and _matches_transaction_type(values[0], tx)
    return False


def _amount(condition: RuleCondition, tx: CalculationInput) -> bool:
    values = _as_numbers(condition.values)
    if not values:
        return False

    amount = tx.amount
    if condition.operation == Op.GREATER_THAN:
        return amount > values[0]
    if condition.operation == Op.LESS_THAN:
        return amount < values[0]
    if condition.operation == Op.EQUALS:
        return amount == values[0]
    if condition.operation == Op.RANGE:
        if len(values) < 2 or values[0] > values[1]:
            return False
        return values[0] <= amount <= values[1]
    return False


_EVALUATORS = {
    ConditionType.MCC: _mcc,
    ConditionType.CURRENCY: _currency,
    ConditionType.CATEGORY: _category,
    ConditionType.MERCHANT: _merchant,
    ConditionType.TRANSACTION_TYPE: _transaction_type,
    ConditionType.AMOUNT: _amount,
}


def evaluate_condition(condition: RuleCondition, tx: CalculationInput) -> bool:
    evaluator = _EVALUATORS.get(condition.type)
    if evaluator is None:
        return False
    return evaluator(condition, tx)


def is_applicable(rule: RewardRule, tx: CalculationInput) -> bool:
    """True when every condition of ``rule`` holds for ``tx``.

    An empty condition list applies to every transaction. A condition whose
    type/operation pair is not supported counts as not matching.
    """
    for condition in rule.conditions:
        passed = evaluate_condition(condition, tx)
        logger.debug(
            "rule=%s condition %s/%s %s",
            rule.id,
            condition.type.value,
            condition.operation.value,
            "passed" if passed else "failed",
        )
        if not passed:
            return False
    return True
