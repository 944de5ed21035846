"""
JSON API for the paycheck budget service.
- Categories are fixed amounts or percentages of what is left after fixed amounts.
- Every change to categories or the paycheck recomputes the allocation before it is visible.
- Alerts are derived on each read from allocation and recorded spend.
- State lives in memory; pass a database URL to persist snapshots through SQLAlchemy.
"""

from __future__ import annotations

import argparse
import logging
import os
import socket
import sys
import time

from flask import Flask, g, jsonify, request

from budget_errors import BudgetError
from budget_models import SPENDING_CATEGORIES
from budget_service import DEFAULT_CURRENCY, BudgetService
from budget_store import BudgetStore

logger = logging.getLogger(__name__)


def _json_body() -> dict:
    """Request body as a dict; missing or malformed JSON reads as empty."""
    body = request.get_json(silent=True)
    return body if isinstance(body, dict) else {}


# -----------------------------
# App factory (allows testing)
# -----------------------------

def create_app(
    db_url: str | None = None,
    *,
    engine_override=None,
    service: BudgetService | None = None,
    seed: bool = True,
    currency: str | None = None,
) -> Flask:
    app = Flask(__name__)

    DB_URL = db_url or os.environ.get("BUDGET_DATABASE_URL")
    CURRENCY = currency or os.environ.get("BUDGET_CURRENCY", DEFAULT_CURRENCY)

    store = None
    if service is None:
        if engine_override is not None:
            store = BudgetStore(engine_override)
        elif DB_URL:
            store = BudgetStore.from_url(DB_URL)
        service = BudgetService(store=store, seed=seed, default_currency=CURRENCY)

    @app.before_request
    def _start_timer():
        g.started = time.perf_counter()

    @app.after_request
    def _cors_and_log(response):
        response.headers["Access-Control-Allow-Origin"] = "*"
        response.headers["Access-Control-Allow-Headers"] = "Content-Type"
        response.headers["Access-Control-Allow-Methods"] = "GET, POST, PUT, DELETE, OPTIONS"
        elapsed_ms = (time.perf_counter() - g.get("started", time.perf_counter())) * 1000
        logger.info("%s %s %s %.1f ms", request.method, request.path, response.status_code, elapsed_ms)
        return response

    @app.errorhandler(BudgetError)
    def _budget_error(exc: BudgetError):
        return jsonify(exc.to_dict()), exc.status

    @app.get("/health")
    def health():
        return jsonify({"ok": True})

    # ---- Categories ----
    @app.get("/categories")
    def categories_index():
        return jsonify({
            "currency": service.currency,
            "categories": [rule.to_dict() for rule in service.get_categories()],
        })

    @app.post("/categories")
    def categories_create():
        rule = service.create_category(_json_body())
        return jsonify({"category": rule.to_dict()}), 201

    @app.put("/categories/<rule_id>")
    def categories_update(rule_id: str):
        rule = service.update_category(rule_id, _json_body())
        return jsonify({"category": rule.to_dict()})

    @app.delete("/categories/<rule_id>")
    def categories_delete(rule_id: str):
        service.delete_category(rule_id)
        return "", 204

    @app.get("/spending-categories")
    def spending_categories_index():
        owners = service.spending_category_owners()
        return jsonify({
            "spendingCategories": [
                {
                    "tag": tag,
                    "categoryId": owners[tag].id if owners[tag] else None,
                    "categoryName": owners[tag].name if owners[tag] else None,
                }
                for tag in SPENDING_CATEGORIES
            ]
        })

    # ---- Paycheck & allocation ----
    @app.get("/paycheck")
    def paycheck_show():
        paycheck = service.get_paycheck()
        return jsonify({"paycheck": paycheck.to_dict() if paycheck else None})

    @app.put("/paycheck")
    def paycheck_set():
        body = _json_body()
        paycheck = service.set_paycheck(body.get("amount"), body.get("currency"))
        allocation = service.get_allocation()
        return jsonify({
            "paycheck": paycheck.to_dict(),
            "allocation": allocation.to_dict() if allocation else None,
        })

    @app.post("/allocate")
    def allocate_preview():
        body = _json_body()
        allocation = service.preview_allocation(body.get("amount"), body.get("currency"), body.get("categories"))
        return jsonify(allocation.to_dict())

    # ---- Transactions ----
    @app.get("/transactions")
    def transactions_index():
        return jsonify({"transactions": [tx.to_dict() for tx in service.get_transactions()]})

    @app.post("/transactions")
    def transactions_add():
        body = _json_body()
        tx = service.add_transaction(
            body.get("categoryId"),
            body.get("amount"),
            note=body.get("note"),
            occurred_at=body.get("occurredAt"),
            currency=body.get("currency"),
        )
        return jsonify({"transaction": tx.to_dict()}), 201

    @app.delete("/transactions/<tx_id>")
    def transactions_delete(tx_id: str):
        service.delete_transaction(tx_id)
        return "", 204

    # ---- Alerts & summary ----
    @app.get("/alerts")
    def alerts_index():
        return jsonify({"alerts": [a.to_dict() for a in service.get_alerts()]})

    @app.get("/summary")
    def summary():
        return jsonify(service.get_summary())

    @app.post("/onboarding")
    def onboarding():
        body = _json_body()
        amount = body.get("amount", body.get("paycheckAmount"))
        return jsonify(service.complete_onboarding(amount, body.get("currency"), body.get("categories")))

    @app.post("/dev/reset")
    def dev_reset():
        seed_flag = _json_body().get("seed", True)
        service.reset(seed=bool(seed_flag))
        return jsonify(service.get_summary())

    # Expose service/store for tests
    app.config["_SERVICE"] = service
    app.config["_STORE"] = store

    return app


# -----------------------------
# Dev server with safe port binding (debugger & reloader disabled)
# -----------------------------

def _find_free_port() -> int:
    env_port = os.environ.get("PORT")
    if env_port:
        try:
            port = int(env_port)
            if 0 <= port <= 65535:
                return port
        except ValueError:
            pass
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as s:
        s.bind(("127.0.0.1", 0))
        return s.getsockname()[1]


def main(argv: list[str] | None = None) -> None:
    parser = argparse.ArgumentParser(description="Paycheck budget API server.")
    parser.add_argument(
        "--database",
        help="SQLAlchemy database URL used to persist the budget (defaults to BUDGET_DATABASE_URL, else memory only).",
    )
    parser.add_argument(
        "--host",
        help="Host interface for the development server. Defaults to HOST env var or 127.0.0.1.",
    )
    parser.add_argument(
        "--port",
        type=int,
        help="Port for the development server. Defaults to PORT env var or an ephemeral port.",
    )
    parser.add_argument(
        "--currency",
        help="Currency label for a fresh budget. Defaults to BUDGET_CURRENCY env var or USD.",
    )
    parser.add_argument(
        "--empty",
        action="store_true",
        help="Start a fresh budget without the default categories and paycheck.",
    )

    args = parser.parse_args(argv)
    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(name)s: %(message)s")
    app = create_app(db_url=args.database, seed=not args.empty, currency=args.currency)

    host = args.host or os.environ.get("HOST", "127.0.0.1")
    port = args.port
    if port is None:
        port = _find_free_port()

    try:
        print(f"Budget API running on http://{host}:{port}")
        app.run(host=host, port=port, debug=False, use_reloader=False, threaded=True)
    except SystemExit:
        print(
            "\n[!] Server failed to start (SystemExit). This environment may block sockets or the port is unavailable."
        )
        print("    - Try setting a custom port: PORT=5000 python budget_web_app.py")
        print("    - Or run the test suite: python -m unittest discover -v tests")
        sys.exit(0)


if __name__ == "__main__":
    main()
