from cardpoints.domain.models import RewardRule


def rank_rules(rules: list[RewardRule]) -> list[RewardRule]:
    """Order rules by precedence: higher ``priority`` first.

    ``sorted`` is stable, so rules sharing a priority keep their declared order.
    """
    return sorted(rules, key=lambda rule: rule.priority, reverse=True)


def select_rule(rules: list[RewardRule]) -> RewardRule | None:
    ranked = rank_rules(rules)
    return ranked[0] if ranked else None
