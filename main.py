# Split a paycheck across budget categories from the terminal.
# A user can:
# set the paycheck
# add fixed or percentage categories
# log spending against a category
# see usage and alerts

import os

from budget_errors import BudgetError
from budget_reports import allocation_frame, alerts_frame, spend_by_currency, transactions_frame, usage_frame
from budget_service import BudgetService
from budget_store import BudgetStore


def main():

    # Persist to a database when one is configured, otherwise keep it in memory
    db_url = os.environ.get("BUDGET_DATABASE_URL")
    store = BudgetStore.from_url(db_url) if db_url else None
    service = BudgetService(store=store, seed=True, default_currency=os.environ.get("BUDGET_CURRENCY", "USD"))

    # User input loop
    while True:
        print("\nChoose an input:")
        print("1. Show summary")
        print("2. Set paycheck")
        print("3. Add category")
        print("4. Add transaction")
        print("5. Show alerts")
        print("6. Quit")
        choice = input("> ")

        try:
            if choice == "1":
                show_summary(service)
            elif choice == "2":
                amount = input("Amount: ")
                currency = input("Currency (blank keeps current): ")
                paycheck = service.set_paycheck(amount, currency or None)
                print(f"Paycheck set to {paycheck.currency} {paycheck.amount:,.2f}")
            elif choice == "3":
                add_category(service)
            elif choice == "4":
                add_transaction(service)
            elif choice == "5":
                show_alerts(service)
            elif choice == "6":
                print("Goodbye :)")
                break
            else:
                print("Unknown command")
        except BudgetError as exc:
            print(f"Error: {exc.message}")


def show_summary(service):
    allocation = service.get_allocation()
    if allocation is None:
        print("\nNo paycheck set yet.")
    else:
        print(f"\nPaycheck: {allocation.currency} {allocation.gross_income:,.2f}")
        print(allocation_frame(allocation).to_string(index=False))
        print(f"Fixed: {allocation.fixed_total:,.2f}  Leftover: {allocation.leftover:,.2f}")

    print("\nUsage:")
    print(usage_frame(service.get_usage()).to_string(index=False))

    transactions = service.get_transactions()
    names = {rule.id: rule.name for rule in service.get_categories()}
    df = transactions_frame(transactions, names)
    if not df.empty:
        print("\nTransactions:")
        print(df)
        # Spend recorded in other currencies is not converted
        print("\nSpent by currency:")
        for currency, total in spend_by_currency(transactions).items():
            print(f"  {currency}: {total:,.2f}")


def add_category(service):
    name = input("Name: ")
    kind = input("Type (fixed/percent): ").strip().lower()
    payload = {"name": name, "type": kind}
    if kind == "fixed":
        payload["amount"] = input("Amount: ")
    else:
        payload["percent"] = input("Percent: ")
    tags = input("Spending categories (comma separated, optional): ")
    if tags.strip():
        payload["spendingCategories"] = [t.strip() for t in tags.split(",") if t.strip()]
    rule = service.create_category(payload)
    print(f"Added category: {rule.name} ({rule.id})")


def add_transaction(service):
    for rule in service.get_categories():
        print(f"  {rule.id}: {rule.name}")
    category_id = input("Category id: ").strip()
    amount = input("Amount: ")
    note = input("Note: ")
    tx = service.add_transaction(category_id, amount, note=note)
    print(f"Added transaction: {tx.note or ''} ({tx.currency} {tx.amount:,.2f}) on {tx.occurred_at:%Y-%m-%d %H:%M:%S}")


def show_alerts(service):
    df = alerts_frame(service.get_alerts())
    if df.empty:
        print("No alerts :)")
    else:
        print(df.to_string(index=False))


if __name__ == "__main__":
    main()
