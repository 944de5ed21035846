"""Split a paycheck across fixed and percentage category rules."""

from __future__ import annotations

from typing import Sequence

from budget_errors import FixedExceedsIncome, InvalidAmount, PercentageCeilingExceeded
from budget_models import (
    RULE_PERCENT,
    Allocation,
    AllocationLine,
    CategoryRule,
    is_valid_money,
    round_money,
    to_number,
)
from category_rules import PERCENT_CEILING


def percentage_total(rules: Sequence[CategoryRule]) -> float:
    return round_money(sum(r.percent for r in rules if r.is_percent))


def fixed_total(rules: Sequence[CategoryRule]) -> float:
    return round_money(sum(r.amount for r in rules if r.is_fixed))


def allocate(gross_income, rules: Sequence[CategoryRule], currency: str) -> Allocation:
    """Compute the allocation breakdown for ``gross_income``.

    Fixed rules are taken off the top; percent rules share what is left.
    Each total is rounded to cents where it is computed, in this order:
    percentage total, fixed total, remainder, per-rule amounts, variable
    total, leftover. Leftover headroom is reported, never redistributed.
    """
    amount = to_number(gross_income)
    if not is_valid_money(amount):
        raise InvalidAmount()

    pct_total = percentage_total(rules)
    if pct_total > PERCENT_CEILING:
        raise PercentageCeilingExceeded()

    fixed = fixed_total(rules)
    if fixed > amount:
        raise FixedExceedsIncome()

    remaining_after_fixed = round_money(amount - fixed)

    lines = []
    for rule in rules:
        if rule.is_fixed:
            allocated = rule.amount
        else:
            allocated = round_money((rule.percent / 100) * remaining_after_fixed)
        lines.append(
            AllocationLine(
                id=rule.id,
                name=rule.name,
                type=rule.type,
                rule=rule.rule_snapshot(),
                allocated=allocated,
            )
        )

    variable_total = round_money(sum(line.allocated for line in lines if line.type == RULE_PERCENT))
    leftover = round_money(remaining_after_fixed - variable_total)

    return Allocation(
        currency=currency,
        gross_income=round_money(amount),
        fixed_total=fixed,
        percentage_total=pct_total,
        remaining_after_fixed=remaining_after_fixed,
        total_allocated=round_money(fixed + variable_total),
        leftover=leftover,
        allocations=tuple(lines),
    )
