from __future__ import annotations

from fastapi import Depends, HTTPException, Request
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select

from moneykaki.core.settings import settings
from moneykaki.db import get_db
from moneykaki.services.security import account_id_from_token
from moneykaki.models.account import Account, ROLE_ADMIN, ROLE_ADVISOR


def _token_from(request: Request) -> str | None:
    token = request.cookies.get(settings.COOKIE_NAME)
    if token:
        return token
    auth = request.headers.get("Authorization") or ""
    scheme, _, value = auth.partition(" ")
    if scheme.lower() == "bearer" and value:
        return value.strip()
    return None


async def get_current_account(
    request: Request,
    db: AsyncSession = Depends(get_db),
) -> Account:
    token = _token_from(request)
    if not token:
        raise HTTPException(status_code=401, detail="not_logged_in")
    account_id = account_id_from_token(token)
    if account_id is None:
        raise HTTPException(status_code=401, detail="invalid_token")
    account = (await db.execute(select(Account).where(Account.id == account_id))).scalar_one_or_none()
    if not account or not account.is_active:
        raise HTTPException(status_code=401, detail="account_not_found")
    return account


def require_role(*roles: str):
    async def _dep(account: Account = Depends(get_current_account)) -> Account:
        if account.role not in roles:
            raise HTTPException(status_code=403, detail="forbidden")
        return account

    return _dep


get_current_advisor = require_role(ROLE_ADVISOR, ROLE_ADMIN)
get_current_admin = require_role(ROLE_ADMIN)
