from __future__ import annotations

from flask import Blueprint, current_app, jsonify, request

from mealsection.models import ROLE_MANAGER
from mealsection.services import wallet_service
from mealsection.services.reconciliation_service import persist_report, recompute_account_balances
from mealsection.utils.auth import require_account
from mealsection.utils.deferred import defer

admin_bp = Blueprint("admin_bp", __name__, url_prefix="/api/admin")


def _adjust(add: bool):
    manager = require_account(ROLE_MANAGER)
    payload = request.get_json(silent=True) or {}
    account = wallet_service.admin_adjust(
        payload.get("userId"),
        payload.get("amount"),
        add=add,
        actor_id=int(manager.id),
    )
    broadcaster = current_app.extensions["mealsection"]["broadcaster"]
    defer(
        broadcaster.emit,
        "users:balanceUpdated",
        {"userId": str(account.id), "availableBal": int(account.available_bal or 0)},
    )
    verb = "added" if add else "removed"
    return jsonify(
        {
            "ok": True,
            "message": f"Funds {verb} successfully",
            "user": account.to_dict(),
        }
    ), 200


@admin_bp.post("/add-funds")
def add_funds():
    return _adjust(True)


@admin_bp.post("/remove-funds")
def remove_funds():
    return _adjust(False)


@admin_bp.post("/reconcile")
def reconcile():
    manager = require_account(ROLE_MANAGER)
    payload = request.get_json(silent=True) or {}
    summary = recompute_account_balances(role=str(payload.get("role") or ""))
    if payload.get("persist", True):
        row = persist_report(summary, trigger="api", requested_by=int(manager.id))
        summary["report_id"] = int(row.id)
    if summary["drift_count"]:
        current_app.logger.warning("ledger_drift_detected drift_count=%s net_drift=%s", summary["drift_count"], summary["net_drift"])
    return jsonify(summary), 200
