from __future__ import annotations

from decimal import Decimal

from fastapi import APIRouter, Depends, HTTPException
from loguru import logger
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select

from moneykaki.db import get_db
from moneykaki.deps import get_current_admin
from moneykaki.models.account import Account, ROLES, STATUS_ACTIVE, STATUS_INACTIVE
from moneykaki.models.ledger import CURRENCY_CREDITS, CURRENCY_POINTS
from moneykaki.routers.auth import account_out
from moneykaki.services.ledger_service import get_account, adjust_balance
from moneykaki.services.streak_evaluator import run_nightly_evaluator

router = APIRouter(prefix="/api/v1/admin", tags=["admin"])


class SetStatusIn(BaseModel):
    status: str = Field(pattern=f"^({STATUS_ACTIVE}|{STATUS_INACTIVE})$")


class AdjustBalanceIn(BaseModel):
    account_id: int
    currency: str = Field(pattern=f"^({CURRENCY_CREDITS}|{CURRENCY_POINTS})$")
    amount: Decimal
    note: str | None = Field(default=None, max_length=255)


@router.get("/accounts")
async def list_accounts(
    role: str | None = None,
    _: Account = Depends(get_current_admin),
    db: AsyncSession = Depends(get_db),
):
    stmt = select(Account).order_by(Account.id.desc())
    if role:
        if role not in ROLES:
            raise HTTPException(status_code=400, detail="unknown_role")
        stmt = stmt.where(Account.role == role)
    rows = (await db.execute(stmt)).scalars().all()
    return [account_out(a) for a in rows]


@router.put("/accounts/{account_id}/status")
async def set_account_status(
    account_id: int,
    payload: SetStatusIn,
    admin: Account = Depends(get_current_admin),
    db: AsyncSession = Depends(get_db),
):
    if account_id == admin.id:
        raise HTTPException(status_code=400, detail="cannot_change_own_status")
    account = await get_account(db, account_id)
    account.status = payload.status
    logger.info(f"Admin {admin.id} set account {account_id} status to {payload.status}")
    return {"ok": True, "id": account.id, "status": account.status}


@router.post("/balances/adjust")
async def adjust_account_balance(
    payload: AdjustBalanceIn,
    admin: Account = Depends(get_current_admin),
    db: AsyncSession = Depends(get_db),
):
    balance = await adjust_balance(db, payload.account_id, payload.currency, payload.amount, note=payload.note)
    logger.info(f"Admin {admin.id} adjusted {payload.currency} of account {payload.account_id} by {payload.amount}")
    return {"ok": True, "currency": payload.currency, "balance": balance}


@router.post("/challenges/evaluate")
async def run_evaluator(admin: Account = Depends(get_current_admin)):
    logger.info(f"Admin {admin.id} triggered the challenge evaluator")
    summary = await run_nightly_evaluator()
    return summary.to_dict()
