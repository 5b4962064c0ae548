from __future__ import annotations

import json
from datetime import datetime

from sqlalchemy import case, func

from mealsection.errors import ValidationError
from mealsection.extensions import db
from mealsection.models import ROLES, Account, LedgerEntry, ReconciliationReport


def _ledger_sums(role: str | None) -> dict[int, int]:
    signed = case((LedgerEntry.direction == "in", LedgerEntry.amount), else_=-LedgerEntry.amount)
    query = db.session.query(LedgerEntry.account_id, func.coalesce(func.sum(signed), 0))
    if role:
        query = query.join(Account, Account.id == LedgerEntry.account_id).filter(Account.role == role)
    return {int(account_id): int(total or 0) for account_id, total in query.group_by(LedgerEntry.account_id)}


def recompute_account_balances(*, role: str | None = None) -> dict:
    """Replay the ledger per account and report balances that disagree with it.

    ``available_bal`` only ever moves through ``post_txn``, so for a healthy
    account it equals the signed sum of its ledger entries. Anything else is
    drift: a write that bypassed the ledger or a lost update.
    """
    role = (role or "").strip().lower() or None
    if role is not None and role not in ROLES:
        raise ValidationError(f"role must be one of {', '.join(ROLES)}")

    sums = _ledger_sums(role)
    query = Account.query
    if role:
        query = query.filter(Account.role == role)
    accounts = query.order_by(Account.id.asc()).all()

    drift_items = []
    for account in accounts:
        computed = sums.get(int(account.id), 0)
        stored = int(account.available_bal or 0)
        if stored != computed:
            drift_items.append(
                {
                    "account_id": int(account.id),
                    "role": account.role,
                    "stored_balance": stored,
                    "computed_balance": computed,
                    "drift": stored - computed,
                }
            )

    return {
        "ok": True,
        "role": role or "",
        "account_count": len(accounts),
        "drift_count": len(drift_items),
        "net_drift": sum(item["drift"] for item in drift_items),
        "drift_items": drift_items,
        "generated_at": datetime.utcnow().isoformat(),
    }


def persist_report(summary: dict, *, trigger: str = "api", requested_by: int | None = None) -> ReconciliationReport:
    report = ReconciliationReport(
        trigger=trigger,
        role=summary.get("role") or None,
        account_count=int(summary.get("account_count") or 0),
        drift_count=int(summary.get("drift_count") or 0),
        net_drift=int(summary.get("net_drift") or 0),
        drift_items_json=json.dumps(summary.get("drift_items") or []),
        requested_by=requested_by,
    )
    db.session.add(report)
    db.session.commit()
    return report
