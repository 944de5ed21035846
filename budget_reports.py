"""Tabular views of service results for the terminal client."""

from __future__ import annotations

from typing import Iterable

import pandas as pd

from budget_models import Alert, Allocation, CategoryUsage, Transaction
from usage_alerts import budget_status

ALLOCATION_COLUMNS = ["name", "type", "rule", "allocated"]
USAGE_COLUMNS = ["name", "type", "allocated", "spent", "remaining", "used_pct", "status"]
ALERT_COLUMNS = ["severity", "category", "percent_used", "message"]
TRANSACTION_COLUMNS = ["occurred_at", "category", "amount", "currency", "note"]


def _rule_label(rule: dict) -> str:
    if "percent" in rule:
        return f"{rule['percent']:g}%"
    return f"{rule['amount']:,.2f}"


def allocation_frame(allocation: Allocation | None) -> pd.DataFrame:
    if allocation is None or not allocation.allocations:
        return pd.DataFrame(columns=ALLOCATION_COLUMNS)
    rows = [
        {"name": line.name, "type": line.type, "rule": _rule_label(line.rule), "allocated": line.allocated}
        for line in allocation.allocations
    ]
    return pd.DataFrame(rows, columns=ALLOCATION_COLUMNS)


def usage_frame(usages: Iterable[CategoryUsage]) -> pd.DataFrame:
    rows = []
    for usage in usages:
        ratio = usage.spent / usage.allocated if usage.allocated > 0 else None
        rows.append({
            "name": usage.name,
            "type": usage.rule.type,
            "allocated": usage.allocated,
            "spent": usage.spent,
            "remaining": usage.remaining,
            "used_pct": round(ratio * 100, 1) if ratio is not None else None,
            "status": budget_status(ratio) if ratio is not None else "unfunded",
        })
    return pd.DataFrame(rows, columns=USAGE_COLUMNS)


def alerts_frame(alerts: Iterable[Alert]) -> pd.DataFrame:
    rows = [
        {"severity": a.severity, "category": a.category_name, "percent_used": a.percent_used, "message": a.message}
        for a in alerts
    ]
    return pd.DataFrame(rows, columns=ALERT_COLUMNS)


def transactions_frame(transactions: Iterable[Transaction], names: dict[str, str] | None = None) -> pd.DataFrame:
    names = names or {}
    rows = [
        {
            "occurred_at": pd.Timestamp(tx.occurred_at),
            "category": names.get(tx.category_id, tx.category_id),
            "amount": tx.amount,
            "currency": tx.currency,
            "note": tx.note or "",
        }
        for tx in transactions
    ]
    df = pd.DataFrame(rows, columns=TRANSACTION_COLUMNS)
    if not df.empty:
        df = df.sort_values("occurred_at", kind="stable").reset_index(drop=True)
    return df


def spend_by_currency(transactions: Iterable[Transaction]) -> pd.Series:
    """Totals per recorded currency; mixed-currency logs are not converted."""
    df = transactions_frame(transactions)
    if df.empty:
        return pd.Series(dtype=float)
    return df.groupby("currency")["amount"].sum().round(2)
