from __future__ import annotations

from flask import g

from mealsection.errors import Forbidden, Unauthorized
from mealsection.extensions import db
from mealsection.models import Account, ROLE_MANAGER


def current_account() -> Account | None:
    uid = getattr(g, "auth_user_id", None)
    if uid is None:
        return None
    return db.session.get(Account, int(uid))


def require_account(*roles: str) -> Account:
    """Return the authenticated account, optionally restricted to ``roles``.

    Managers pass every role check.
    """
    account = current_account()
    if account is None:
        raise Unauthorized("Unauthorized")
    if roles and account.role not in roles and account.role != ROLE_MANAGER:
        raise Forbidden("Forbidden")
    return account


def is_manager(account: Account | None) -> bool:
    return bool(account) and account.role == ROLE_MANAGER
