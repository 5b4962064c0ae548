from __future__ import annotations

import os
import time

import jwt
from flask import current_app, has_app_context


TOKEN_ISSUER = "mealsection"
DEFAULT_TTL_SECONDS = 60 * 60 * 24 * 7


def _signing_key() -> str:
    if has_app_context():
        return current_app.config.get("SECRET_KEY") or "dev-secret"
    return os.getenv("SECRET_KEY") or "dev-secret"


def _ttl_seconds() -> int:
    try:
        return max(60, int(os.getenv("ACCESS_TOKEN_TTL_SECONDS") or DEFAULT_TTL_SECONDS))
    except ValueError:
        return DEFAULT_TTL_SECONDS


def create_access_token(account_id: int, role: str = "", ttl_seconds: int | None = None) -> str:
    now = int(time.time())
    claims = {
        "iss": TOKEN_ISSUER,
        "sub": str(account_id),
        "role": role or "",
        "iat": now,
        "exp": now + (ttl_seconds or _ttl_seconds()),
    }
    return jwt.encode(claims, _signing_key(), algorithm="HS256")


def decode_access_token(token: str) -> int | None:
    """Account id carried by a valid token, or None.

    Expired, tampered, foreign-issuer and non-numeric-subject tokens are all
    just "no account".
    """
    try:
        claims = jwt.decode(token, _signing_key(), algorithms=["HS256"], issuer=TOKEN_ISSUER)
    except jwt.PyJWTError:
        return None
    try:
        return int(claims.get("sub"))
    except (TypeError, ValueError):
        return None


def bearer_token(auth_header: str | None) -> str | None:
    parts = (auth_header or "").split()
    if len(parts) == 2 and parts[0].lower() == "bearer":
        return parts[1]
    return None
