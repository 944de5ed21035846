import itertools
import unittest
from datetime import datetime, timezone

from sqlalchemy import create_engine
from sqlalchemy.pool import StaticPool

from budget_errors import (
    FixedExceedsIncome,
    InvalidAmount,
    InvalidFixedAmount,
    InvalidKind,
    NameRequired,
    NotFound,
    PercentageCeilingExceeded,
    SpendingCategoryConflict,
    ValidationError,
)
from budget_service import BudgetService
from budget_store import BudgetStore

NOW = datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc)


def _service(seed=True, store=None):
    rule_ids = itertools.count(1)
    tx_ids = itertools.count(1)
    return BudgetService(
        store=store,
        seed=seed,
        clock=lambda: NOW,
        rule_id_factory=lambda name: f"rule-{next(rule_ids)}",
        transaction_id_factory=lambda: f"tx-{next(tx_ids)}",
    )


class BudgetServiceCategoryTests(unittest.TestCase):
    def setUp(self):
        self.service = _service()

    def test_seeded_snapshot(self):
        self.assertEqual([r.id for r in self.service.get_categories()], ["essentials", "non-essentials", "uncategorized"])
        self.assertEqual(self.service.get_paycheck().amount, 3000)
        allocation = self.service.get_allocation()
        self.assertEqual([line.allocated for line in allocation.allocations], [1500, 600, 900])
        self.assertEqual(allocation.leftover, 0)

    def test_create_recomputes_allocation(self):
        self.service.delete_category("uncategorized")
        rule = self.service.create_category({"name": "Rent", "type": "fixed", "amount": 1000})
        self.assertEqual(rule.id, "rule-1")
        allocation = self.service.get_allocation()
        self.assertEqual(allocation.fixed_total, 1000)
        self.assertEqual(allocation.remaining_after_fixed, 2000)
        self.assertEqual(allocation.line_for("essentials").allocated, 1000)
        self.assertEqual(allocation.line_for("rule-1").allocated, 1000)
        self.assertEqual(allocation.leftover, 600)

    def test_create_rejects_percent_over_ceiling_and_keeps_state(self):
        before_rules = self.service.get_categories()
        before_allocation = self.service.get_allocation()
        with self.assertRaises(PercentageCeilingExceeded) as ctx:
            self.service.create_category({"name": "Extra", "type": "percent", "percent": 5})
        self.assertEqual(ctx.exception.message, "Percentage categories cannot exceed 100% in total.")
        self.assertEqual(self.service.get_categories(), before_rules)
        self.assertIs(self.service.get_allocation(), before_allocation)

    def test_create_rejects_invalid_input(self):
        with self.assertRaises(NameRequired):
            self.service.create_category({"type": "fixed", "amount": 5})
        with self.assertRaises(InvalidKind):
            self.service.create_category({"name": "X", "type": "weekly"})
        self.assertEqual(len(self.service.get_categories()), 3)

    def test_create_with_owned_tags_lists_every_conflict(self):
        with self.assertRaises(SpendingCategoryConflict) as ctx:
            self.service.create_category({
                "name": "Food",
                "type": "fixed",
                "amount": 10,
                "spendingCategories": ["groceries", "dining", "gifts"],
            })
        conflicts = ctx.exception.conflicts
        self.assertEqual([(c.tag, c.category_name) for c in conflicts], [("groceries", "Essentials"), ("dining", "Non-essentials")])
        self.assertIn("Essentials", ctx.exception.message)
        self.assertEqual(len(self.service.get_categories()), 3)

    def test_deselect_and_reselect_tag_on_same_rule(self):
        rule = self.service.update_category("essentials", {"spendingCategories": ["rent"]})
        self.assertEqual(rule.spending_categories, ("rent",))
        rule = self.service.update_category("essentials", {"spendingCategories": ["rent", "groceries"]})
        self.assertEqual(rule.spending_categories, ("rent", "groceries"))

    def test_freed_tag_can_move_to_another_rule(self):
        self.service.update_category("essentials", {"spendingCategories": ["rent"]})
        rule = self.service.update_category("uncategorized", {"spendingCategories": ["groceries"]})
        self.assertEqual(rule.spending_categories, ("groceries",))

    def test_update_keeps_position_and_checks_ceiling_excluding_itself(self):
        rule = self.service.update_category("essentials", {"name": "Needs", "percent": 40})
        self.assertEqual(rule.id, "essentials")
        self.assertEqual(self.service.get_categories()[0].name, "Needs")
        self.assertEqual(self.service.get_allocation().leftover, 300)
        with self.assertRaises(PercentageCeilingExceeded):
            self.service.update_category("essentials", {"percent": 60})
        self.assertEqual(self.service.get_categories()[0].percent, 40)

    def test_update_and_delete_missing(self):
        with self.assertRaises(NotFound):
            self.service.update_category("nope", {"name": "X"})
        with self.assertRaises(NotFound):
            self.service.delete_category("nope")

    def test_delete_recomputes_without_rule(self):
        self.service.delete_category("essentials")
        allocation = self.service.get_allocation()
        self.assertIsNone(allocation.line_for("essentials"))
        self.assertEqual(allocation.leftover, 1500)
        self.assertNotIn("essentials", [u.id for u in self.service.get_usage()])

    def test_rule_change_that_overdraws_paycheck_is_rejected(self):
        self.service.delete_category("uncategorized")
        with self.assertRaises(FixedExceedsIncome):
            self.service.create_category({"name": "Mortgage", "type": "fixed", "amount": 5000})
        self.assertEqual(len(self.service.get_categories()), 2)
        self.assertIsNotNone(self.service.get_allocation())


class BudgetServicePaycheckTests(unittest.TestCase):
    def setUp(self):
        self.service = _service()

    def test_set_paycheck_recomputes(self):
        paycheck = self.service.set_paycheck("4000", "eur")
        self.assertEqual(paycheck.amount, 4000)
        self.assertEqual(paycheck.currency, "EUR")
        self.assertEqual(paycheck.updated_at, NOW)
        self.assertEqual(self.service.get_allocation().line_for("essentials").allocated, 2000)
        self.assertEqual(self.service.get_allocation().currency, "EUR")
        self.assertEqual(self.service.currency, "EUR")

    def test_set_paycheck_keeps_currency_when_omitted(self):
        self.service.set_paycheck(100, "GBP")
        self.assertEqual(self.service.set_paycheck(200).currency, "GBP")

    def test_set_paycheck_invalid_amount(self):
        for bad in ("abc", -1, None, float("inf")):
            with self.subTest(amount=bad):
                with self.assertRaises(InvalidAmount):
                    self.service.set_paycheck(bad)
        self.assertEqual(self.service.get_paycheck().amount, 3000)

    def test_amounts_too_large_for_cents_are_rejected(self):
        with self.assertRaises(InvalidAmount):
            self.service.set_paycheck(1e307, "USD")
        with self.assertRaises(InvalidFixedAmount):
            self.service.create_category({"name": "Yacht", "type": "fixed", "amount": 1e307})
        with self.assertRaises(InvalidAmount):
            self.service.add_transaction("essentials", 1e307)
        with self.assertRaises(InvalidAmount):
            self.service.preview_allocation(10 ** 400)
        self.assertEqual(self.service.get_paycheck().amount, 3000)
        self.assertEqual(self.service.get_transactions(), [])

    def test_set_paycheck_below_fixed_total_is_rejected(self):
        self.service.delete_category("uncategorized")
        self.service.create_category({"name": "Rent", "type": "fixed", "amount": 2000})
        with self.assertRaises(FixedExceedsIncome):
            self.service.set_paycheck(1000)
        self.assertEqual(self.service.get_paycheck().amount, 3000)

    def test_preview_uses_override_without_committing(self):
        allocation = self.service.preview_allocation(2000, categories=[
            {"name": "Rent", "type": "fixed", "amount": 1000},
            {"name": "Savings", "type": "percent", "percent": 50},
        ])
        self.assertEqual(allocation.fixed_total, 1000)
        self.assertEqual(allocation.remaining_after_fixed, 1000)
        self.assertEqual(allocation.allocations[1].allocated, 500)
        self.assertEqual(allocation.currency, "USD")
        self.assertEqual(len(self.service.get_categories()), 3)
        self.assertEqual(self.service.get_paycheck().amount, 3000)

    def test_preview_over_ceiling(self):
        with self.assertRaises(PercentageCeilingExceeded):
            self.service.preview_allocation(1000, categories=[
                {"name": "A", "type": "percent", "percent": 60},
                {"name": "B", "type": "percent", "percent": 50},
            ])

    def test_preview_defaults_to_active_rules(self):
        allocation = self.service.preview_allocation(1000, "CAD")
        self.assertEqual([line.allocated for line in allocation.allocations], [500, 200, 300])
        self.assertEqual(allocation.currency, "CAD")
        self.assertEqual(self.service.get_paycheck().currency, "USD")


class BudgetServiceTransactionTests(unittest.TestCase):
    def setUp(self):
        self.service = _service()

    def test_add_transaction_defaults(self):
        tx = self.service.add_transaction("essentials", "12.50", note="  Lunch  ")
        self.assertEqual(tx.id, "tx-1")
        self.assertEqual(tx.amount, 12.5)
        self.assertEqual(tx.currency, "USD")
        self.assertEqual(tx.note, "Lunch")
        self.assertEqual(tx.occurred_at, NOW)
        self.assertEqual(self.service.get_transactions(), [tx])

    def test_add_transaction_with_timestamp_and_currency(self):
        tx = self.service.add_transaction("essentials", 10, occurred_at="2024-04-30T08:15:00Z", currency="eur")
        self.assertEqual(tx.occurred_at, datetime(2024, 4, 30, 8, 15, tzinfo=timezone.utc))
        self.assertEqual(tx.currency, "EUR")
        with self.assertRaises(ValidationError):
            self.service.add_transaction("essentials", 10, occurred_at="yesterday")

    def test_add_transaction_validation(self):
        with self.assertRaises(NotFound):
            self.service.add_transaction("missing", 10)
        with self.assertRaises(ValidationError):
            self.service.add_transaction("", 10)
        for bad in (0, -5, "abc", None):
            with self.subTest(amount=bad):
                with self.assertRaises(InvalidAmount):
                    self.service.add_transaction("essentials", bad)
        self.assertEqual(self.service.get_transactions(), [])

    def test_alert_flips_from_warning_to_critical(self):
        self.service.add_transaction("essentials", 1400)
        alerts = self.service.get_alerts()
        self.assertEqual([(a.id, a.severity) for a in alerts], [("near_budget-essentials", "warning")])
        self.service.add_transaction("essentials", 700)
        alerts = self.service.get_alerts()
        self.assertEqual([(a.id, a.severity) for a in alerts], [("over_budget-essentials", "critical")])
        self.assertIn("600.00", alerts[0].message)

    def test_reallocation_clears_alert(self):
        self.service.add_transaction("essentials", 1400)
        self.service.set_paycheck(6000)
        self.assertEqual(self.service.get_alerts(), [])

    def test_mixed_currency_spend_counts_toward_usage(self):
        self.service.add_transaction("essentials", 1000, currency="EUR")
        self.service.add_transaction("essentials", 300)
        usage = self.service.get_usage()[0]
        self.assertEqual(usage.spent, 1300)
        self.assertEqual(self.service.get_alerts()[0].kind, "near_budget")

    def test_delete_transaction(self):
        tx = self.service.add_transaction("essentials", 5)
        self.service.delete_transaction(tx.id)
        self.assertEqual(self.service.get_transactions(), [])
        with self.assertRaises(NotFound):
            self.service.delete_transaction(tx.id)

    def test_summary(self):
        self.service.add_transaction("essentials", 1500)
        summary = self.service.get_summary()
        self.assertEqual(summary["allocatedTotal"], 3000)
        self.assertEqual(summary["spentTotal"], 1500)
        self.assertEqual(summary["budgetUsedPercent"], 50)
        self.assertEqual(summary["leftoverBudget"], 1500)
        self.assertEqual(summary["alerts"][0]["kind"], "near_budget")
        self.assertEqual(summary["currency"], "USD")


class BudgetServiceLifecycleTests(unittest.TestCase):
    def test_empty_service_falls_back_to_fixed_amounts(self):
        service = _service(seed=False)
        self.assertIsNone(service.get_paycheck())
        self.assertIsNone(service.get_allocation())
        service.create_category({"name": "Rent", "type": "fixed", "amount": 200})
        service.create_category({"name": "Fun", "type": "percent", "percent": 10})
        service.add_transaction("rule-1", 190)
        usages = service.get_usage()
        self.assertEqual([u.allocated for u in usages], [200, 0])
        self.assertEqual(service.get_alerts()[0].kind, "near_budget")

    def test_onboarding_replaces_rules_and_clears_log_on_currency_change(self):
        service = _service()
        service.add_transaction("essentials", 10)
        summary = service.complete_onboarding("2500", "EUR", [
            {"name": "Rent", "type": "fixed", "amount": 1000, "spendingCategories": ["rent"]},
            {"id": "fun", "name": "Fun", "type": "percent", "percent": 10},
        ])
        self.assertEqual([r.id for r in service.get_categories()], ["rule-1", "fun"])
        self.assertEqual(service.get_transactions(), [])
        self.assertEqual(summary["paycheck"]["currency"], "EUR")
        self.assertEqual(summary["unallocated"], 1350)

    def test_onboarding_same_currency_keeps_transactions(self):
        service = _service()
        service.add_transaction("essentials", 10)
        service.complete_onboarding(4000, "usd")
        self.assertEqual(len(service.get_transactions()), 1)
        self.assertEqual(len(service.get_categories()), 3)

    def test_onboarding_rejects_tag_conflicts_inside_list(self):
        service = _service()
        with self.assertRaises(SpendingCategoryConflict):
            service.complete_onboarding(2000, "USD", [
                {"name": "A", "type": "percent", "percent": 10, "spendingCategories": ["dining"]},
                {"name": "B", "type": "percent", "percent": 10, "spendingCategories": ["dining"]},
            ])
        with self.assertRaises(PercentageCeilingExceeded):
            service.complete_onboarding(2000, "USD", [
                {"name": "A", "type": "percent", "percent": 70},
                {"name": "B", "type": "percent", "percent": 70},
            ])
        self.assertEqual(len(service.get_categories()), 3)
        self.assertEqual(service.get_paycheck().amount, 3000)

    def test_reset(self):
        service = _service()
        service.add_transaction("essentials", 10)
        service.reset(seed=False)
        self.assertEqual(service.get_categories(), [])
        self.assertIsNone(service.get_paycheck())
        service.reset()
        self.assertEqual(len(service.get_categories()), 3)
        self.assertEqual(service.get_transactions(), [])

    def test_instances_are_independent(self):
        first, second = _service(), _service()
        first.delete_category("essentials")
        self.assertEqual(len(second.get_categories()), 3)

    def test_store_receives_commits_and_restores_them(self):
        engine = create_engine(
            "sqlite:///:memory:",
            connect_args={"check_same_thread": False},
            poolclass=StaticPool,
        )
        store = BudgetStore(engine)
        service = _service(store=store)
        service.create_category({"name": "Gifts", "type": "fixed", "amount": 50, "spendingCategories": ["gifts"]})
        service.add_transaction("essentials", 20, note="Bread")

        restored = BudgetService(store=store, clock=lambda: NOW)
        self.assertEqual(restored.get_categories(), service.get_categories())
        self.assertEqual(restored.get_transactions(), service.get_transactions())
        self.assertEqual(restored.get_allocation(), service.get_allocation())

    def test_rejected_mutation_is_not_persisted(self):
        engine = create_engine(
            "sqlite:///:memory:",
            connect_args={"check_same_thread": False},
            poolclass=StaticPool,
        )
        store = BudgetStore(engine)
        service = _service(store=store)
        with self.assertRaises(PercentageCeilingExceeded):
            service.create_category({"name": "Extra", "type": "percent", "percent": 1})
        self.assertEqual(len(store.load().rules), 3)


if __name__ == "__main__":
    unittest.main()
