from __future__ import annotations

from datetime import datetime, timedelta
from typing import Any

from jose import jwt, JWTError
from passlib.context import CryptContext

from moneykaki.core.settings import settings

TOKEN_TYPE_ACCOUNT = "account"

pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto")


def hash_password(password: str) -> str:
    return pwd_context.hash(password)


def verify_password(password: str, password_hash: str) -> bool:
    # seeded or imported rows may hold something that is not a bcrypt hash
    try:
        return pwd_context.verify(password, password_hash)
    except ValueError:
        return False


def create_token(payload: dict[str, Any], days: int | None = None) -> str:
    exp_days = days if days is not None else settings.JWT_EXPIRE_DAYS
    data = dict(payload)
    data["exp"] = datetime.utcnow() + timedelta(days=exp_days)
    return jwt.encode(data, settings.JWT_SECRET, algorithm=settings.JWT_ALG)


def decode_token(token: str) -> dict[str, Any] | None:
    try:
        return jwt.decode(token, settings.JWT_SECRET, algorithms=[settings.JWT_ALG])
    except JWTError:
        return None


def create_account_token(account_id: int, role: str) -> str:
    return create_token({"type": TOKEN_TYPE_ACCOUNT, "uid": account_id, "role": role})


def account_id_from_token(token: str) -> int | None:
    payload = decode_token(token)
    if not payload or payload.get("type") != TOKEN_TYPE_ACCOUNT:
        return None
    try:
        return int(payload["uid"])
    except (KeyError, TypeError, ValueError):
        return None
