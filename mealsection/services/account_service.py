from __future__ import annotations

from flask import current_app
from sqlalchemy.exc import IntegrityError

from mealsection.errors import Conflict, Forbidden, NotFound, Unauthorized, ValidationError
from mealsection.extensions import db
from mealsection.models import Account, APPROVAL_ROLES, ROLE_CUSTOMER, ROLE_MANAGER, ROLE_VENDOR, ROLES


def signup(payload: dict, *, allow_manager: bool = False) -> Account:
    role = (payload.get("role") or ROLE_CUSTOMER).strip().lower()
    if role not in ROLES:
        raise ValidationError(f"role must be one of {', '.join(ROLES)}")
    if role == ROLE_MANAGER and not allow_manager:
        raise Forbidden("Managers are created by an operator")

    email = (payload.get("email") or "").strip().lower()
    password = payload.get("password") or ""
    name = (payload.get("name") or payload.get("fullName") or "").strip()
    if not email or "@" not in email:
        raise ValidationError("A valid email is required")
    if len(password) < 6:
        raise ValidationError("Password must be at least 6 characters")
    if not name:
        raise ValidationError("name is required")
    store_name = (payload.get("storeName") or "").strip()
    if role == ROLE_VENDOR and not store_name:
        raise ValidationError("storeName is required for vendors")

    account = Account(
        role=role,
        name=name[:120],
        email=email,
        phone=(payload.get("phone") or payload.get("PhoneNumber") or "").strip() or None,
        university=(payload.get("university") or "").strip() or None,
        store_name=store_name or None,
        bank_name=(payload.get("bankName") or "").strip() or None,
        account_number=(payload.get("accountNumber") or "").strip() or None,
        account_name=(payload.get("accountName") or "").strip() or None,
        available_bal=0,
        valid=None,
    )
    account.set_password(password)
    try:
        db.session.add(account)
        db.session.commit()
    except IntegrityError:
        db.session.rollback()
        raise Conflict("An account with this email already exists", code="EMAIL_TAKEN")
    current_app.logger.info("account_signed_up account_id=%s role=%s", account.id, role)
    return account


def authenticate(email, password, *, fcm_token=None) -> Account:
    account = Account.query.filter_by(email=(email or "").strip().lower()).first()
    if account is None or not account.check_password(password or ""):
        raise Unauthorized("Invalid email or password")
    if account.role in APPROVAL_ROLES and account.valid is not True:
        if account.valid is False:
            raise Forbidden("Your account has been rejected. Contact support.", code="ACCOUNT_REJECTED")
        raise Forbidden("Your account is awaiting approval.", code="ACCOUNT_PENDING")
    token = (fcm_token or "").strip() if isinstance(fcm_token, str) else ""
    if token and token != account.fcm_token:
        account.fcm_token = token[:512]
        db.session.commit()
    return account


def set_approval(account_id: int, valid, *, role: str | None = None) -> Account:
    if valid is not None and not isinstance(valid, bool):
        raise ValidationError("valid must be true, false or null")
    account = db.session.get(Account, int(account_id))
    if account is None or account.role not in APPROVAL_ROLES or (role and account.role != role):
        raise NotFound(f"{(role or 'account').capitalize()} not found")
    account.valid = valid
    db.session.commit()
    current_app.logger.info("account_approval_set account_id=%s role=%s valid=%s", account.id, account.role, valid)
    return account
