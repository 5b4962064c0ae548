from __future__ import annotations

from datetime import datetime

from flask import current_app

from mealsection.errors import Conflict, NotFound, ValidationError
from mealsection.extensions import db
from mealsection.models import Account, Withdrawal
from mealsection.utils.ledger import post_txn


def _positive_int(raw, field: str = "amount") -> int:
    if isinstance(raw, bool) or not isinstance(raw, (int, float)) or int(raw) != raw:
        raise ValidationError(f"{field} must be a whole number")
    if raw <= 0:
        raise ValidationError(f"{field} must be positive")
    return int(raw)


def request_withdrawal(account_id: int, role: str, amount, account_name: str = "") -> Withdrawal:
    """Debit ``amount`` and open a pending withdrawal, atomically."""
    value = _positive_int(amount)
    account = db.session.get(Account, int(account_id))
    if account is None or account.role != role:
        raise NotFound(f"{role.capitalize()} not found")

    try:
        withdrawal = Withdrawal(
            account_id=int(account.id),
            account_role=role,
            account_name=(account_name or account.display_name)[:160],
            amount=value,
            status=None,
        )
        db.session.add(withdrawal)
        db.session.flush()
        post_txn(
            account.id,
            value,
            direction="out",
            kind="withdrawal",
            reference=f"withdrawal:{withdrawal.id}",
            note="Withdrawal request",
            require_funds=True,
            commit=False,
        )
        db.session.commit()
    except Exception:
        db.session.rollback()
        raise

    current_app.logger.info(
        "withdrawal_requested withdrawal_id=%s account_id=%s role=%s amount=%s",
        withdrawal.id,
        account.id,
        role,
        value,
    )
    return withdrawal


def resolve_withdrawal(withdrawal_id: int, role: str, status, *, resolved_by: int | None = None) -> dict:
    """Approve (``True``) or reject (``False``) a pending withdrawal.

    Rejection refunds exactly the withdrawn amount. Repeating the resolution
    already recorded is a no-op; reversing it is refused.
    """
    if not isinstance(status, bool):
        raise ValidationError("status must be a boolean")

    try:
        withdrawal = (
            Withdrawal.query.filter_by(id=int(withdrawal_id), account_role=role)
            .with_for_update()
            .populate_existing()
            .first()
        )
        if withdrawal is None:
            raise NotFound("Withdrawal not found")
        existing = withdrawal.status
        if existing is not None:
            db.session.rollback()
            if existing == status:
                return {"withdrawal": withdrawal, "changed": False}
            raise Conflict(
                f"Withdrawal already {'approved' if existing else 'rejected'}",
                code="WITHDRAWAL_ALREADY_RESOLVED",
            )

        withdrawal.status = status
        withdrawal.resolved_at = datetime.utcnow()
        withdrawal.resolved_by = resolved_by
        if status is False:
            post_txn(
                withdrawal.account_id,
                int(withdrawal.amount),
                direction="in",
                kind="withdrawal_refund",
                reference=f"withdrawal:{withdrawal.id}",
                note="Withdrawal rejected - refund",
                commit=False,
            )
        db.session.commit()
    except Exception:
        db.session.rollback()
        raise

    current_app.logger.info(
        "withdrawal_resolved withdrawal_id=%s account_id=%s approved=%s",
        withdrawal.id,
        withdrawal.account_id,
        status,
    )
    return {"withdrawal": withdrawal, "changed": True}


def admin_adjust(account_id, amount, *, add: bool, actor_id: int | None = None) -> Account:
    """Manager credit/debit of an account balance. Debits never go below zero."""
    value = _positive_int(amount)
    try:
        account = db.session.get(Account, int(account_id))
    except (TypeError, ValueError):
        raise ValidationError("userId must be an account id")
    if account is None:
        raise NotFound("User not found")

    if add:
        post_txn(account.id, value, direction="in", kind="admin_fund", reference="AdminFund", note="Admin funding")
    else:
        post_txn(
            account.id,
            value,
            direction="out",
            kind="admin_remove",
            reference="AdminRemove",
            note="Admin removal",
            require_funds=True,
        )
    db.session.refresh(account)
    current_app.logger.info(
        "admin_balance_adjusted account_id=%s amount=%s add=%s actor_id=%s",
        account.id,
        value,
        add,
        actor_id,
    )
    return account
