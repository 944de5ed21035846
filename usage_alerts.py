"""Per-category spend against allocations, and the alerts derived from it."""

from __future__ import annotations

import math
from datetime import datetime
from typing import Iterable, Sequence

from budget_models import (
    ALERT_NEAR_BUDGET,
    ALERT_OVER_BUDGET,
    SEVERITY_CRITICAL,
    SEVERITY_WARNING,
    Alert,
    Allocation,
    CategoryRule,
    CategoryUsage,
    Paycheck,
    Transaction,
    round_money,
)

NEAR_BUDGET_RATIO = 0.85
OVER_BUDGET_RATIO = 1.0

STATUS_COMFORTABLE = "comfortable"
STATUS_WARNING = "warning"
STATUS_CRITICAL = "critical"


def whole_percent(ratio: float) -> int:
    return int(math.floor(ratio * 100 + 0.5))


def budget_status(ratio: float) -> str:
    if ratio > OVER_BUDGET_RATIO:
        return STATUS_CRITICAL
    if ratio >= NEAR_BUDGET_RATIO:
        return STATUS_WARNING
    return STATUS_COMFORTABLE


def _allocated_for(rule: CategoryRule, allocation: Allocation | None) -> float:
    line = allocation.line_for(rule.id) if allocation is not None else None
    if line is not None:
        return line.allocated
    # No paycheck yet: a fixed rule still knows its own amount.
    return rule.amount if rule.is_fixed else 0.0


def usage_by_category(
    rules: Sequence[CategoryRule],
    allocation: Allocation | None,
    transactions: Iterable[Transaction],
) -> list[CategoryUsage]:
    """Join rules with their allocation and the transaction log.

    Transaction currency is not checked against the paycheck currency;
    amounts are summed as recorded.
    """
    spent_by_category: dict[str, float] = {}
    for tx in transactions:
        spent_by_category[tx.category_id] = spent_by_category.get(tx.category_id, 0.0) + tx.amount

    usages = []
    for rule in rules:
        allocated = _allocated_for(rule, allocation)
        spent = round_money(spent_by_category.get(rule.id, 0.0))
        usages.append(
            CategoryUsage(rule=rule, allocated=allocated, spent=spent, remaining=round_money(allocated - spent))
        )
    return usages


def build_alerts(usages: Iterable[CategoryUsage], currency: str, now: datetime) -> list[Alert]:
    alerts = []
    for usage in usages:
        if usage.allocated <= 0:
            continue
        ratio = usage.spent / usage.allocated
        status = budget_status(ratio)
        if status == STATUS_COMFORTABLE:
            continue

        percent_used = whole_percent(ratio)
        if status == STATUS_CRITICAL:
            kind, severity = ALERT_OVER_BUDGET, SEVERITY_CRITICAL
            over = round_money(usage.spent - usage.allocated)
            message = f"{usage.name} is over budget by {currency} {over:,.2f}."
        else:
            kind, severity = ALERT_NEAR_BUDGET, SEVERITY_WARNING
            message = (
                f"{usage.name} has used {percent_used}% of its budget "
                f"({currency} {usage.remaining:,.2f} left)."
            )

        alerts.append(
            Alert(
                id=f"{kind}-{usage.id}",
                kind=kind,
                severity=severity,
                currency=currency,
                category_id=usage.id,
                category_name=usage.name,
                allocated=usage.allocated,
                spent=usage.spent,
                remaining=usage.remaining,
                percent_used=percent_used,
                message=message,
                updated_at=now,
            )
        )
    return alerts


def summarize(
    paycheck: Paycheck | None,
    allocation: Allocation | None,
    usages: Sequence[CategoryUsage],
    alerts: Sequence[Alert],
    currency: str,
) -> dict:
    allocated_total = round_money(sum(u.allocated for u in usages))
    spent_total = round_money(sum(u.spent for u in usages))
    used_percent = whole_percent(spent_total / allocated_total) if allocated_total > 0 else 0
    return {
        "currency": currency,
        "paycheck": paycheck.to_dict() if paycheck is not None else None,
        "allocatedTotal": allocated_total,
        "spentTotal": spent_total,
        "budgetUsedPercent": used_percent,
        "leftoverBudget": round_money(allocated_total - spent_total),
        "unallocated": allocation.leftover if allocation is not None else 0.0,
        "alerts": [a.to_dict() for a in alerts],
        "categories": [u.to_dict() for u in usages],
    }
