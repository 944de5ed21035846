"""Budget service: owns one snapshot and applies every mutation atomically.

A mutation copies the snapshot, changes the copy, recomputes the
allocation from scratch and only then swaps the copy in. A mutation that
raises leaves the committed snapshot untouched. Reads take the same lock,
so nobody sees a changed rule set next to a stale allocation.
"""

from __future__ import annotations

import logging
import threading
import uuid
from dataclasses import replace
from datetime import datetime, timezone
from typing import Callable

from allocation import allocate
from budget_errors import (
    BudgetError,
    InvalidAmount,
    NotFound,
    PercentageCeilingExceeded,
    SpendingCategoryConflict,
    ValidationError,
)
from budget_models import (
    RULE_PERCENT,
    Allocation,
    BudgetState,
    CategoryRule,
    Paycheck,
    Transaction,
    is_valid_money,
    round_money,
    to_number,
    utc_now,
)
from category_rules import (
    check_percent_ceiling,
    check_spending_category_conflicts,
    generate_rule_id,
    normalize_rules,
    parse_rule,
    spending_category_owners,
)
from usage_alerts import build_alerts, summarize, usage_by_category

logger = logging.getLogger(__name__)

DEFAULT_CURRENCY = "USD"
DEFAULT_PAYCHECK_AMOUNT = 3000.0

DEFAULT_RULES = (
    CategoryRule(
        id="essentials",
        name="Essentials",
        type=RULE_PERCENT,
        percent=50.0,
        spending_categories=("groceries", "rent", "utilities", "transport", "insurance", "healthcare"),
    ),
    CategoryRule(
        id="non-essentials",
        name="Non-essentials",
        type=RULE_PERCENT,
        percent=20.0,
        spending_categories=("dining", "entertainment", "shopping", "subscriptions", "travel"),
    ),
    CategoryRule(id="uncategorized", name="Uncategorized", type=RULE_PERCENT, percent=30.0),
)


def new_transaction_id() -> str:
    return f"txn-{uuid.uuid4().hex[:12]}"


def default_state(now: datetime, currency: str = DEFAULT_CURRENCY) -> BudgetState:
    return BudgetState(
        currency=currency,
        rules=list(DEFAULT_RULES),
        paycheck=Paycheck(amount=DEFAULT_PAYCHECK_AMOUNT, currency=currency, updated_at=now),
    )


def normalize_currency(value) -> str | None:
    if not isinstance(value, str):
        return None
    code = value.strip().upper()
    return code or None


def _parse_occurred_at(value) -> datetime | None:
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        ts = value
    elif isinstance(value, str):
        try:
            ts = datetime.fromisoformat(value.strip().replace("Z", "+00:00"))
        except ValueError:
            raise ValidationError('"occurredAt" must be an ISO-8601 timestamp.') from None
    else:
        raise ValidationError('"occurredAt" must be an ISO-8601 timestamp.')
    if ts.tzinfo is None:
        ts = ts.replace(tzinfo=timezone.utc)
    return ts


class BudgetService:
    def __init__(
        self,
        state: BudgetState | None = None,
        *,
        store=None,
        clock: Callable[[], datetime] = utc_now,
        rule_id_factory: Callable[[str | None], str] = generate_rule_id,
        transaction_id_factory: Callable[[], str] = new_transaction_id,
        default_currency: str = DEFAULT_CURRENCY,
        seed: bool = False,
    ):
        self._lock = threading.RLock()
        self._store = store
        self._clock = clock
        self._rule_id_factory = rule_id_factory
        self._transaction_id_factory = transaction_id_factory
        self._default_currency = normalize_currency(default_currency) or DEFAULT_CURRENCY

        loaded = False
        if state is None and store is not None:
            state = store.load()
            loaded = state is not None
        if state is None:
            state = self._fresh_state(seed)
        state = state.copy()
        try:
            state.allocation = self._allocate(state)
        except BudgetError as exc:
            logger.warning("Starting without an allocation: %s", exc.message)
            state.allocation = None
        self._state = state
        if store is not None and not loaded:
            store.save(state)

    def _fresh_state(self, seed: bool) -> BudgetState:
        if seed:
            return default_state(self._clock(), self._default_currency)
        return BudgetState(currency=self._default_currency)

    # ---- Commit machinery ----
    @staticmethod
    def _allocate(state: BudgetState) -> Allocation | None:
        if state.paycheck is None:
            return None
        return allocate(state.paycheck.amount, state.rules, state.paycheck.currency)

    def _apply(self, action: str, mutate):
        with self._lock:
            draft = self._state.copy()
            try:
                result = mutate(draft)
                draft.allocation = self._allocate(draft)
            except BudgetError as exc:
                logger.warning("Rejected %s: %s (%s)", action, exc.message, exc.kind)
                raise
            if self._store is not None:
                self._store.save(draft)
            self._state = draft
            logger.info("Committed %s", action)
            return result

    @property
    def currency(self) -> str:
        with self._lock:
            paycheck = self._state.paycheck
            return paycheck.currency if paycheck is not None else self._state.currency

    # ---- Categories ----
    def get_categories(self) -> list[CategoryRule]:
        with self._lock:
            return list(self._state.rules)

    def spending_category_owners(self) -> dict[str, CategoryRule | None]:
        with self._lock:
            return spending_category_owners(self._state.rules)

    def _check_rule_fits(self, rules, rule: CategoryRule, exclude_id: str | None = None) -> None:
        if not check_percent_ceiling(rules, rule.percent, exclude_id):
            raise PercentageCeilingExceeded("Percentage categories cannot exceed 100% in total.")
        conflicts = check_spending_category_conflicts(rules, rule.spending_categories, exclude_id)
        if conflicts:
            raise SpendingCategoryConflict(conflicts)

    def create_category(self, payload: dict) -> CategoryRule:
        def mutate(draft: BudgetState) -> CategoryRule:
            rule = parse_rule(payload)
            self._check_rule_fits(draft.rules, rule)
            rule = replace(rule, id=self._rule_id_factory(rule.name))
            draft.rules.append(rule)
            return rule

        return self._apply("category create", mutate)

    def update_category(self, rule_id: str, payload: dict) -> CategoryRule:
        def mutate(draft: BudgetState) -> CategoryRule:
            current = draft.find_rule(rule_id)
            if current is None:
                raise NotFound("Category not found.")
            rule = parse_rule(payload, current)
            self._check_rule_fits(draft.rules, rule, exclude_id=current.id)
            draft.rules[draft.rules.index(current)] = rule
            return rule

        return self._apply(f"category update {rule_id}", mutate)

    def delete_category(self, rule_id: str) -> None:
        def mutate(draft: BudgetState) -> None:
            current = draft.find_rule(rule_id)
            if current is None:
                raise NotFound("Category not found.")
            draft.rules.remove(current)

        self._apply(f"category delete {rule_id}", mutate)

    # ---- Paycheck & allocation ----
    def get_paycheck(self) -> Paycheck | None:
        with self._lock:
            return self._state.paycheck

    def get_allocation(self) -> Allocation | None:
        with self._lock:
            return self._state.allocation

    def set_paycheck(self, amount, currency: str | None = None) -> Paycheck:
        value = to_number(amount)
        if not is_valid_money(value):
            raise InvalidAmount()

        def mutate(draft: BudgetState) -> Paycheck:
            fallback = draft.paycheck.currency if draft.paycheck is not None else draft.currency
            code = normalize_currency(currency) or fallback
            draft.paycheck = Paycheck(amount=round_money(value), currency=code, updated_at=self._clock())
            draft.currency = code
            return draft.paycheck

        return self._apply("paycheck update", mutate)

    def preview_allocation(self, amount, currency: str | None = None, categories=None) -> Allocation:
        """Allocate without committing, against ``categories`` when given, else the active rules."""
        if categories:
            rules = normalize_rules(categories, self._rule_id_factory)
        else:
            rules = self.get_categories()
        return allocate(amount, rules, normalize_currency(currency) or self.currency)

    # ---- Transactions ----
    def get_transactions(self) -> list[Transaction]:
        with self._lock:
            return list(self._state.transactions)

    def add_transaction(
        self,
        category_id: str,
        amount,
        note: str | None = None,
        occurred_at=None,
        currency: str | None = None,
    ) -> Transaction:
        if not isinstance(category_id, str) or not category_id.strip():
            raise ValidationError('"categoryId" is required.')
        value = to_number(amount)
        if not is_valid_money(value) or value <= 0:
            raise InvalidAmount("A positive numeric transaction amount is required.")
        when = _parse_occurred_at(occurred_at)
        note = note.strip() if isinstance(note, str) and note.strip() else None

        def mutate(draft: BudgetState) -> Transaction:
            if draft.find_rule(category_id) is None:
                raise NotFound("Category not found.")
            fallback = draft.paycheck.currency if draft.paycheck is not None else draft.currency
            tx = Transaction(
                id=self._transaction_id_factory(),
                category_id=category_id,
                amount=round_money(value),
                currency=normalize_currency(currency) or fallback,
                note=note,
                occurred_at=when or self._clock(),
            )
            draft.transactions.append(tx)
            return tx

        return self._apply("transaction add", mutate)

    def delete_transaction(self, transaction_id: str) -> None:
        def mutate(draft: BudgetState) -> None:
            match = next((t for t in draft.transactions if t.id == transaction_id), None)
            if match is None:
                raise NotFound("Transaction not found.")
            draft.transactions.remove(match)

        self._apply(f"transaction delete {transaction_id}", mutate)

    # ---- Usage, alerts, summary ----
    def get_usage(self):
        with self._lock:
            state = self._state
            return usage_by_category(state.rules, state.allocation, state.transactions)

    def get_alerts(self):
        with self._lock:
            return build_alerts(self.get_usage(), self.currency, self._clock())

    def get_summary(self) -> dict:
        with self._lock:
            usages = self.get_usage()
            alerts = build_alerts(usages, self.currency, self._clock())
            return summarize(self._state.paycheck, self._state.allocation, usages, alerts, self.currency)

    # ---- Onboarding & dev tooling ----
    def complete_onboarding(self, amount, currency: str | None, categories=None) -> dict:
        """Replace paycheck and rule set in one commit.

        Switching currency clears the transaction log.
        """
        value = to_number(amount)
        if not is_valid_money(value):
            raise InvalidAmount()
        rules = normalize_rules(categories, self._rule_id_factory) if categories is not None else None
        if rules is not None:
            ids = [r.id for r in rules]
            if len(set(ids)) != len(ids):
                raise ValidationError("Category ids must be unique.")
            conflicts = []
            for index, rule in enumerate(rules):
                conflicts.extend(check_spending_category_conflicts(rules[:index], rule.spending_categories))
            if conflicts:
                raise SpendingCategoryConflict(conflicts)

        def mutate(draft: BudgetState) -> None:
            previous = draft.paycheck.currency if draft.paycheck is not None else draft.currency
            code = normalize_currency(currency) or previous
            if code != previous:
                draft.transactions = []
            if rules is not None:
                draft.rules = list(rules)
            draft.currency = code
            draft.paycheck = Paycheck(amount=round_money(value), currency=code, updated_at=self._clock())

        self._apply("onboarding", mutate)
        return self.get_summary()

    def reset(self, seed: bool = True) -> None:
        def mutate(draft: BudgetState) -> None:
            fresh = self._fresh_state(seed)
            draft.currency = fresh.currency
            draft.rules = fresh.rules
            draft.paycheck = fresh.paycheck
            draft.transactions = []

        self._apply("reset", mutate)
