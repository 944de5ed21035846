"""SQL persistence for a budget snapshot.

The service keeps its working state in memory; a store, when attached,
receives every committed snapshot and provides the one to start from.
"""

from __future__ import annotations

import json
import logging
from datetime import datetime

from sqlalchemy import create_engine, text
from sqlalchemy.pool import StaticPool

from budget_models import BudgetState, CategoryRule, Paycheck, Transaction, isoformat

logger = logging.getLogger(__name__)

TABLE_SNAPSHOT = "budget_snapshot"
TABLE_RULES = "budget_rules"
TABLE_TX = "budget_transactions"


def _parse_ts(value: str) -> datetime:
    return datetime.fromisoformat(value.replace("Z", "+00:00"))


def engine_for_url(db_url: str):
    if db_url in ("sqlite://", "sqlite:///:memory:"):
        return create_engine(db_url, connect_args={"check_same_thread": False}, poolclass=StaticPool)
    if db_url.startswith("sqlite"):
        return create_engine(db_url, connect_args={"check_same_thread": False})
    return create_engine(db_url)


class BudgetStore:
    def __init__(self, engine):
        self.engine = engine
        with engine.begin() as conn:
            conn.execute(text(f"""
                CREATE TABLE IF NOT EXISTS {TABLE_SNAPSHOT} (
                    id INTEGER PRIMARY KEY CHECK (id=1),
                    currency TEXT NOT NULL,
                    paycheck_amount REAL,
                    paycheck_currency TEXT,
                    paycheck_updated_at TEXT
                )
            """))
            conn.execute(text(f"""
                CREATE TABLE IF NOT EXISTS {TABLE_RULES} (
                    id TEXT PRIMARY KEY,
                    position INTEGER NOT NULL,
                    name TEXT NOT NULL,
                    type TEXT CHECK (type in ('fixed','percent')) NOT NULL,
                    amount REAL,
                    percent REAL,
                    spending_categories TEXT NOT NULL DEFAULT '[]'
                )
            """))
            conn.execute(text(f"""
                CREATE TABLE IF NOT EXISTS {TABLE_TX} (
                    id TEXT PRIMARY KEY,
                    position INTEGER NOT NULL,
                    category_id TEXT NOT NULL,
                    amount REAL NOT NULL,
                    currency TEXT NOT NULL,
                    note TEXT,
                    occurred_at TEXT NOT NULL
                )
            """))

    @classmethod
    def from_url(cls, db_url: str) -> "BudgetStore":
        return cls(engine_for_url(db_url))

    def load(self) -> BudgetState | None:
        """Return the saved snapshot, or None when nothing was saved yet."""
        with self.engine.connect() as conn:
            head = conn.execute(text(f"SELECT * FROM {TABLE_SNAPSHOT} WHERE id=1")).mappings().first()
            if head is None:
                return None
            rule_rows = conn.execute(text(f"SELECT * FROM {TABLE_RULES} ORDER BY position")).mappings().all()
            tx_rows = conn.execute(text(f"SELECT * FROM {TABLE_TX} ORDER BY position")).mappings().all()

        paycheck = None
        if head["paycheck_amount"] is not None:
            paycheck = Paycheck(
                amount=float(head["paycheck_amount"]),
                currency=head["paycheck_currency"] or head["currency"],
                updated_at=_parse_ts(head["paycheck_updated_at"]),
            )
        rules = [
            CategoryRule(
                id=r["id"],
                name=r["name"],
                type=r["type"],
                amount=r["amount"],
                percent=r["percent"],
                spending_categories=tuple(json.loads(r["spending_categories"] or "[]")),
            )
            for r in rule_rows
        ]
        transactions = [
            Transaction(
                id=t["id"],
                category_id=t["category_id"],
                amount=float(t["amount"]),
                currency=t["currency"],
                note=t["note"],
                occurred_at=_parse_ts(t["occurred_at"]),
            )
            for t in tx_rows
        ]
        logger.info("Loaded budget snapshot: %d rules, %d transactions", len(rules), len(transactions))
        return BudgetState(currency=head["currency"], rules=rules, paycheck=paycheck, transactions=transactions)

    def save(self, state: BudgetState) -> None:
        paycheck = state.paycheck
        with self.engine.begin() as conn:
            conn.execute(text(f"DELETE FROM {TABLE_SNAPSHOT}"))
            conn.execute(
                text(f"""
                    INSERT INTO {TABLE_SNAPSHOT} (id, currency, paycheck_amount, paycheck_currency, paycheck_updated_at)
                    VALUES (1, :currency, :amount, :pcurrency, :updated_at)
                """),
                {
                    "currency": state.currency,
                    "amount": paycheck.amount if paycheck else None,
                    "pcurrency": paycheck.currency if paycheck else None,
                    "updated_at": isoformat(paycheck.updated_at) if paycheck else None,
                },
            )
            conn.execute(text(f"DELETE FROM {TABLE_RULES}"))
            for position, rule in enumerate(state.rules):
                conn.execute(
                    text(f"""
                        INSERT INTO {TABLE_RULES} (id, position, name, type, amount, percent, spending_categories)
                        VALUES (:id, :position, :name, :type, :amount, :percent, :tags)
                    """),
                    {
                        "id": rule.id,
                        "position": position,
                        "name": rule.name,
                        "type": rule.type,
                        "amount": rule.amount,
                        "percent": rule.percent,
                        "tags": json.dumps(list(rule.spending_categories)),
                    },
                )
            conn.execute(text(f"DELETE FROM {TABLE_TX}"))
            for position, tx in enumerate(state.transactions):
                conn.execute(
                    text(f"""
                        INSERT INTO {TABLE_TX} (id, position, category_id, amount, currency, note, occurred_at)
                        VALUES (:id, :position, :category_id, :amount, :currency, :note, :occurred_at)
                    """),
                    {
                        "id": tx.id,
                        "position": position,
                        "category_id": tx.category_id,
                        "amount": tx.amount,
                        "currency": tx.currency,
                        "note": tx.note,
                        "occurred_at": isoformat(tx.occurred_at),
                    },
                )
