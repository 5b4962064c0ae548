from __future__ import annotations

from sqlalchemy import select, update

from mealsection.errors import InsufficientBalance, NotFound, ValidationError
from mealsection.extensions import db
from mealsection.models import Account, LedgerEntry


DIRECTION_IN = "in"
DIRECTION_OUT = "out"


def _clean_amount(amount) -> int:
    if isinstance(amount, bool):
        raise ValidationError("amount must be an integer")
    try:
        value = int(amount)
    except (TypeError, ValueError):
        raise ValidationError("amount must be an integer")
    if value != amount and not isinstance(amount, str):
        raise ValidationError("amount must be a whole number")
    if value <= 0:
        raise ValidationError("amount must be positive")
    return value


def post_txn(
    account_id: int,
    amount: int,
    *,
    direction: str,
    kind: str,
    reference: str = "",
    note: str = "",
    require_funds: bool = False,
    commit: bool = True,
) -> LedgerEntry:
    """Move ``amount`` into or out of an account and record it in the ledger.

    The balance change is a single conditional UPDATE, so two concurrent
    mutations of the same account serialize in the database instead of
    overwriting each other. With ``require_funds`` a debit only applies while
    the balance covers it; otherwise nothing is written and
    ``InsufficientBalance`` is raised.

    Pass ``commit=False`` to compose the movement into a caller's transaction;
    the caller then owns commit and rollback.
    """
    direction = (direction or "").strip().lower()
    if direction not in (DIRECTION_IN, DIRECTION_OUT):
        raise ValueError(f"invalid ledger direction: {direction!r}")
    value = _clean_amount(amount)
    delta = value if direction == DIRECTION_IN else -value

    stmt = update(Account).where(Account.id == int(account_id))
    if direction == DIRECTION_OUT and require_funds:
        stmt = stmt.where(Account.available_bal >= value)
    stmt = stmt.values(available_bal=Account.available_bal + delta).execution_options(synchronize_session="fetch")
    result = db.session.execute(stmt)

    if int(result.rowcount or 0) == 0:
        exists = db.session.execute(select(Account.id).where(Account.id == int(account_id))).first()
        if exists is None:
            raise NotFound("Account not found")
        raise InsufficientBalance("Insufficient balance")

    new_balance = int(db.session.execute(select(Account.available_bal).where(Account.id == int(account_id))).scalar_one())
    entry = LedgerEntry(
        account_id=int(account_id),
        reference=str(reference or "")[:128],
        amount=value,
        direction=direction,
        kind=(kind or "adjustment")[:32],
        description=(note or "")[:255] or None,
        previous_balance=new_balance - delta,
        new_balance=new_balance,
    )
    db.session.add(entry)
    db.session.flush()
    if commit:
        db.session.commit()
    return entry


def balance_of(account_id: int) -> int:
    value = db.session.execute(select(Account.available_bal).where(Account.id == int(account_id))).scalar()
    if value is None:
        raise NotFound("Account not found")
    return int(value)
