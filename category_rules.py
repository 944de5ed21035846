"""Validation and normalization of budget category rules."""

from __future__ import annotations

import math
import re
import uuid
from dataclasses import replace
from typing import Callable, Iterable

from budget_errors import (
    InvalidFixedAmount,
    InvalidKind,
    InvalidPercent,
    InvalidSpendingCategory,
    NameRequired,
    ValidationError,
)
from budget_models import (
    RULE_FIXED,
    RULE_KINDS,
    SPENDING_CATEGORIES,
    CategoryRule,
    Conflict,
    is_valid_money,
    round_money,
    to_number,
)

PERCENT_CEILING = 100.0

_SLUG_RE = re.compile(r"[^a-z0-9]+")


def generate_rule_id(name: str | None) -> str:
    slug = _SLUG_RE.sub("-", name.lower()) if name else "cat"
    return f"{slug}-{uuid.uuid4().hex[:6]}"


def _parse_spending_categories(raw) -> tuple[str, ...]:
    if not isinstance(raw, (list, tuple)):
        raise InvalidSpendingCategory('"spendingCategories" must be a list.')
    tags: list[str] = []
    for item in raw:
        tag = item.strip().lower() if isinstance(item, str) else None
        if tag not in SPENDING_CATEGORIES:
            raise InvalidSpendingCategory(f"Unknown spending category: {item!r}.")
        if tag not in tags:
            tags.append(tag)
    return tuple(tags)


def parse_rule(payload: dict | None, fallback: CategoryRule | None = None) -> CategoryRule:
    """Build a normalized rule from raw input, using ``fallback`` for fields the input omits.

    Raises a ValidationError subclass naming the first invalid field.
    """
    payload = payload if isinstance(payload, dict) else {}

    raw_name = payload.get("name")
    name = raw_name.strip() if isinstance(raw_name, str) else ""
    if not name and fallback is not None:
        name = fallback.name
    if not name:
        raise NameRequired()

    rule_type = payload.get("type")
    if rule_type is None and fallback is not None:
        rule_type = fallback.type
    if rule_type not in RULE_KINDS:
        raise InvalidKind()

    amount = percent = None
    if rule_type == RULE_FIXED:
        raw = payload.get("amount")
        if raw is None and fallback is not None:
            raw = fallback.amount
        value = to_number(raw)
        if not is_valid_money(value):
            raise InvalidFixedAmount()
        amount = round_money(value)
    else:
        raw = payload.get("percent")
        if raw is None and fallback is not None:
            raw = fallback.percent
        value = to_number(raw)
        if not math.isfinite(value) or value <= 0:
            raise InvalidPercent()
        percent = round_money(value)

    if payload.get("spendingCategories") is not None:
        tags = _parse_spending_categories(payload["spendingCategories"])
    elif fallback is not None:
        tags = fallback.spending_categories
    else:
        tags = ()

    return CategoryRule(
        id=fallback.id if fallback is not None else None,
        name=name,
        type=rule_type,
        amount=amount,
        percent=percent,
        spending_categories=tags,
    )


def normalize_rules(
    payloads,
    id_factory: Callable[[str | None], str] = generate_rule_id,
) -> list[CategoryRule]:
    """Normalize a caller-supplied rule list (previews, onboarding)."""
    if not isinstance(payloads, (list, tuple)):
        raise ValidationError('"categories" must be a list.')
    rules = []
    for payload in payloads:
        rule = parse_rule(payload)
        supplied_id = payload.get("id") if isinstance(payload, dict) else None
        if isinstance(supplied_id, str) and supplied_id.strip():
            rule_id = supplied_id.strip()
        else:
            rule_id = id_factory(rule.name)
        rules.append(replace(rule, id=rule_id))
    return rules


def check_percent_ceiling(
    rules: Iterable[CategoryRule],
    incoming_percent: float | None,
    exclude_id: str | None = None,
) -> bool:
    total = sum(r.percent for r in rules if r.is_percent and r.id != exclude_id)
    return round_money(total + (incoming_percent or 0)) <= PERCENT_CEILING


def check_spending_category_conflicts(
    rules: Iterable[CategoryRule],
    incoming_tags: Iterable[str],
    exclude_id: str | None = None,
) -> list[Conflict]:
    others = [r for r in rules if r.id != exclude_id]
    conflicts = []
    for tag in incoming_tags:
        owner = next((r for r in others if tag in r.spending_categories), None)
        if owner is not None:
            conflicts.append(Conflict(tag=tag, category_id=owner.id, category_name=owner.name))
    return conflicts


def spending_category_owners(rules: Iterable[CategoryRule]) -> dict[str, CategoryRule | None]:
    owners: dict[str, CategoryRule | None] = {tag: None for tag in SPENDING_CATEGORIES}
    for rule in rules:
        for tag in rule.spending_categories:
            owners[tag] = rule
    return owners
