import io
import unittest
from contextlib import redirect_stdout
from unittest import mock

import main
from budget_service import BudgetService


class TerminalClientTests(unittest.TestCase):
    def setUp(self):
        self.service = BudgetService(seed=True)

    def _run(self, func, answers=()):
        out = io.StringIO()
        with mock.patch("builtins.input", side_effect=list(answers)), redirect_stdout(out):
            func(self.service)
        return out.getvalue()

    def test_summary_lists_spend_per_currency(self):
        self.service.add_transaction("essentials", 40, currency="USD")
        self.service.add_transaction("essentials", 12.5, currency="EUR")
        out = self._run(main.show_summary)
        self.assertIn("Spent by currency:", out)
        self.assertIn("EUR: 12.50", out)
        self.assertIn("USD: 40.00", out)

    def test_summary_without_transactions(self):
        out = self._run(main.show_summary)
        self.assertIn("Paycheck: USD 3,000.00", out)
        self.assertNotIn("Spent by currency:", out)

    def test_add_transaction_prompts(self):
        out = self._run(main.add_transaction, ["essentials", "25", "Bus pass"])
        self.assertIn("Added transaction: Bus pass (USD 25.00)", out)
        self.assertEqual(len(self.service.get_transactions()), 1)

    def test_menu_reports_errors_and_quits(self):
        out = io.StringIO()
        answers = ["2", "lots", "", "6"]
        with mock.patch("builtins.input", side_effect=answers), redirect_stdout(out):
            main.main()
        self.assertIn("Error: A numeric paycheck amount is required.", out.getvalue())
        self.assertIn("Goodbye :)", out.getvalue())


if __name__ == "__main__":
    unittest.main()
