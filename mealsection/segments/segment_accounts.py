from __future__ import annotations

from flask import Blueprint, jsonify, request

from mealsection.errors import ValidationError
from mealsection.models import LedgerEntry, ROLE_MANAGER
from mealsection.services import account_service
from mealsection.utils.auth import require_account
from mealsection.utils.jwt_utils import create_access_token

accounts_bp = Blueprint("accounts_bp", __name__, url_prefix="/api/accounts")


@accounts_bp.post("/signup")
def signup():
    payload = request.get_json(silent=True) or {}
    account = account_service.signup(payload)
    body = {"ok": True, "account": account.to_dict()}
    if account.valid is None and account.role in ("vendor", "rider"):
        body["message"] = "Signup received. Your account is awaiting approval."
    else:
        body["token"] = create_access_token(account.id, account.role)
    return jsonify(body), 201


@accounts_bp.post("/login")
def login():
    payload = request.get_json(silent=True) or {}
    account = account_service.authenticate(
        payload.get("email"),
        payload.get("password"),
        fcm_token=payload.get("fcmToken"),
    )
    return jsonify({"ok": True, "token": create_access_token(account.id, account.role), "account": account.to_dict()}), 200


@accounts_bp.get("/me")
def me():
    account = require_account()
    history = (
        LedgerEntry.query.filter_by(account_id=int(account.id))
        .order_by(LedgerEntry.id.desc())
        .limit(50)
        .all()
    )
    return jsonify({"ok": True, "account": account.to_dict(), "paymentHistory": [h.to_dict() for h in history]}), 200


@accounts_bp.patch("/<int:account_id>/approve")
def approve(account_id: int):
    require_account(ROLE_MANAGER)
    payload = request.get_json(silent=True) or {}
    if "valid" not in payload:
        raise ValidationError("valid is required")
    account = account_service.set_approval(account_id, payload.get("valid"))
    return jsonify({"ok": True, "account": account.to_dict()}), 200
