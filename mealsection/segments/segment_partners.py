from __future__ import annotations

from flask import Blueprint, jsonify, request

from mealsection.errors import Forbidden, ValidationError
from mealsection.models import ROLE_MANAGER, ROLE_RIDER, ROLE_VENDOR, Withdrawal
from mealsection.services import account_service, wallet_service
from mealsection.utils.auth import require_account


def build_partner_bp(role: str, *, url_prefix: str, withdraw_path: str, resolve_rule: str, resolve_methods: list[str]) -> Blueprint:
    """Approval and withdrawal routes shared by vendors and riders."""
    bp = Blueprint(f"{role}s_bp", __name__, url_prefix=url_prefix)
    id_key = f"{role}Id"
    name_key = f"{role}Name"

    @bp.patch("/<int:account_id>/approve")
    def approve(account_id: int):
        require_account(ROLE_MANAGER)
        payload = request.get_json(silent=True) or {}
        if "valid" not in payload:
            raise ValidationError("valid is required")
        account = account_service.set_approval(account_id, payload.get("valid"), role=role)
        return jsonify({"ok": True, role: account.to_dict()}), 200

    @bp.post(withdraw_path)
    def request_withdrawal():
        caller = require_account(role)
        payload = request.get_json(silent=True) or {}
        raw_id = payload.get(id_key, payload.get("accountId", caller.id))
        try:
            account_id = int(raw_id)
        except (TypeError, ValueError):
            raise ValidationError(f"{id_key} must be an account id")
        if caller.role != ROLE_MANAGER and account_id != int(caller.id):
            raise Forbidden("Forbidden")
        withdrawal = wallet_service.request_withdrawal(
            account_id,
            role,
            payload.get("amount"),
            account_name=(payload.get(name_key) or payload.get("accountName") or ""),
        )
        return jsonify({"ok": True, "message": "Withdrawal request submitted", "withdrawal": withdrawal.to_dict()}), 201

    @bp.get(withdraw_path)
    def list_withdrawals():
        caller = require_account(role)
        q = Withdrawal.query.filter_by(account_role=role)
        if caller.role != ROLE_MANAGER:
            q = q.filter_by(account_id=int(caller.id))
        items = q.order_by(Withdrawal.id.desc()).limit(500).all()
        return jsonify({"ok": True, "items": [w.to_dict() for w in items]}), 200

    def resolve_withdrawal(withdrawal_id: int):
        manager = require_account(ROLE_MANAGER)
        payload = request.get_json(silent=True) or {}
        result = wallet_service.resolve_withdrawal(
            withdrawal_id,
            role,
            payload.get("status"),
            resolved_by=int(manager.id),
        )
        body = {"ok": True, "withdrawal": result["withdrawal"].to_dict(), "changed": result["changed"]}
        if not result["changed"]:
            body["message"] = "Withdrawal already resolved"
        return jsonify(body), 200

    bp.add_url_rule(resolve_rule, "resolve_withdrawal", resolve_withdrawal, methods=resolve_methods)
    return bp


vendors_bp = build_partner_bp(
    ROLE_VENDOR,
    url_prefix="/api/vendors",
    withdraw_path="/withdrawals",
    resolve_rule="/withdrawals/<int:withdrawal_id>/status",
    resolve_methods=["PUT"],
)

riders_bp = build_partner_bp(
    ROLE_RIDER,
    url_prefix="/api/riders",
    withdraw_path="/withdraw",
    resolve_rule="/withdraw/rider/<int:withdrawal_id>",
    resolve_methods=["PATCH"],
)
