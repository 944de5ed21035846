"""Value types shared by the budget core, plus money helpers.

Objects serialize to the camelCase shapes the JSON API returns.
"""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from datetime import datetime, timezone

RULE_FIXED = "fixed"
RULE_PERCENT = "percent"
RULE_KINDS = (RULE_FIXED, RULE_PERCENT)

ALERT_NEAR_BUDGET = "near_budget"
ALERT_OVER_BUDGET = "over_budget"
SEVERITY_WARNING = "warning"
SEVERITY_CRITICAL = "critical"

SPENDING_CATEGORIES = (
    "groceries",
    "rent",
    "utilities",
    "transport",
    "insurance",
    "healthcare",
    "dining",
    "entertainment",
    "shopping",
    "subscriptions",
    "travel",
    "personal-care",
    "education",
    "gifts",
    "debt",
    "savings",
    "investments",
    "other",
)


def round_money(value: float) -> float:
    """Round to cents, halves away from negative infinity."""
    scaled = value * 100 + 0.5
    if not math.isfinite(scaled):
        return value
    return math.floor(scaled) / 100


def to_number(value) -> float:
    """Coerce JSON input to a float; anything unusable becomes NaN."""
    if isinstance(value, bool):
        return math.nan
    if isinstance(value, (int, float)):
        try:
            return float(value)
        except OverflowError:
            return math.nan
    if isinstance(value, str):
        raw = value.strip()
        # no digit separators such as "1_000"
        if not raw or "_" in raw:
            return math.nan
        try:
            parsed = float(raw)
        except ValueError:
            return math.nan
        return parsed if math.isfinite(parsed) else math.nan
    return math.nan


def is_valid_money(value: float) -> bool:
    """Finite, non-negative and still finite once expressed in cents."""
    return math.isfinite(value) and value >= 0 and math.isfinite(value * 100)


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def isoformat(ts: datetime) -> str:
    return ts.isoformat().replace("+00:00", "Z")


@dataclass(frozen=True)
class CategoryRule:
    id: str | None
    name: str
    type: str
    amount: float | None = None
    percent: float | None = None
    spending_categories: tuple[str, ...] = ()

    @property
    def is_fixed(self) -> bool:
        return self.type == RULE_FIXED

    @property
    def is_percent(self) -> bool:
        return self.type == RULE_PERCENT

    def rule_snapshot(self) -> dict:
        return {"amount": self.amount} if self.is_fixed else {"percent": self.percent}

    def to_dict(self) -> dict:
        data = {"id": self.id, "name": self.name, "type": self.type}
        data.update(self.rule_snapshot())
        data["spendingCategories"] = list(self.spending_categories)
        return data


@dataclass(frozen=True)
class Conflict:
    tag: str
    category_id: str
    category_name: str

    def to_dict(self) -> dict:
        return {"tag": self.tag, "categoryId": self.category_id, "categoryName": self.category_name}


@dataclass(frozen=True)
class Paycheck:
    amount: float
    currency: str
    updated_at: datetime

    def to_dict(self) -> dict:
        return {"amount": self.amount, "currency": self.currency, "updatedAt": isoformat(self.updated_at)}


@dataclass(frozen=True)
class AllocationLine:
    id: str
    name: str
    type: str
    rule: dict
    allocated: float

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "type": self.type,
            "rule": dict(self.rule),
            "allocated": self.allocated,
        }


@dataclass(frozen=True)
class Allocation:
    currency: str
    gross_income: float
    fixed_total: float
    percentage_total: float
    remaining_after_fixed: float
    total_allocated: float
    leftover: float
    allocations: tuple[AllocationLine, ...] = ()

    def line_for(self, rule_id: str) -> AllocationLine | None:
        return next((line for line in self.allocations if line.id == rule_id), None)

    def to_dict(self) -> dict:
        return {
            "currency": self.currency,
            "grossIncome": self.gross_income,
            "fixedTotal": self.fixed_total,
            "percentageTotal": self.percentage_total,
            "remainingAfterFixed": self.remaining_after_fixed,
            "totalAllocated": self.total_allocated,
            "leftover": self.leftover,
            "allocations": [line.to_dict() for line in self.allocations],
        }


@dataclass(frozen=True)
class Transaction:
    id: str
    category_id: str
    amount: float
    currency: str
    occurred_at: datetime
    note: str | None = None

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "categoryId": self.category_id,
            "amount": self.amount,
            "currency": self.currency,
            "note": self.note,
            "occurredAt": isoformat(self.occurred_at),
        }


@dataclass(frozen=True)
class CategoryUsage:
    rule: CategoryRule
    allocated: float
    spent: float
    remaining: float

    @property
    def id(self) -> str:
        return self.rule.id

    @property
    def name(self) -> str:
        return self.rule.name

    def to_dict(self) -> dict:
        data = self.rule.to_dict()
        data.update({"allocated": self.allocated, "spent": self.spent, "remaining": self.remaining})
        return data


@dataclass(frozen=True)
class Alert:
    id: str
    kind: str
    severity: str
    currency: str
    category_id: str
    category_name: str
    allocated: float
    spent: float
    remaining: float
    percent_used: int
    message: str
    updated_at: datetime

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "kind": self.kind,
            "severity": self.severity,
            "currency": self.currency,
            "categoryId": self.category_id,
            "categoryName": self.category_name,
            "allocated": self.allocated,
            "spent": self.spent,
            "remaining": self.remaining,
            "percentUsed": self.percent_used,
            "message": self.message,
            "updatedAt": isoformat(self.updated_at),
        }


@dataclass
class BudgetState:
    """The snapshot a service owns: rules, paycheck, transaction log and the last allocation."""

    currency: str = "USD"
    rules: list[CategoryRule] = field(default_factory=list)
    paycheck: Paycheck | None = None
    transactions: list[Transaction] = field(default_factory=list)
    allocation: Allocation | None = None

    def copy(self) -> "BudgetState":
        return BudgetState(
            currency=self.currency,
            rules=list(self.rules),
            paycheck=self.paycheck,
            transactions=list(self.transactions),
            allocation=self.allocation,
        )

    def find_rule(self, rule_id: str) -> CategoryRule | None:
        return next((rule for rule in self.rules if rule.id == rule_id), None)
