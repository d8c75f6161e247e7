from __future__ import annotations

from datetime import datetime
from decimal import Decimal

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from moneykaki.db import get_db
from moneykaki.deps import get_current_account
from moneykaki.models.account import Account
from moneykaki.services.extraction import AMOUNT_KINDS, CATEGORIES, ExtractionError, extractor
from moneykaki.services.finance_service import (
    GOAL_OPTIONS, finance_status, finances_out, get_finances, set_amount,
)

router = APIRouter(prefix="/api/v1/finances", tags=["finances"])


class FinancesIn(BaseModel):
    monthly_income: Decimal | None = Field(default=None, ge=0)
    monthly_expense: Decimal | None = Field(default=None, ge=0)
    amount_to_save: Decimal | None = Field(default=None, ge=0)
    today_spend: Decimal | None = Field(default=None, ge=0)
    selected_categories: list[str] | None = None
    goal_to_achieve: str | None = None


class AmountIn(BaseModel):
    text: str = Field(min_length=1, max_length=2000)
    kind: str


@router.get("")
async def my_finances(account: Account = Depends(get_current_account), db: AsyncSession = Depends(get_db)):
    return finances_out(await get_finances(db, account.id))


@router.put("")
async def update_finances(
    payload: FinancesIn,
    account: Account = Depends(get_current_account),
    db: AsyncSession = Depends(get_db),
):
    if payload.selected_categories is not None and not set(payload.selected_categories) <= set(CATEGORIES):
        raise HTTPException(status_code=400, detail="unknown_category")
    if payload.goal_to_achieve is not None and payload.goal_to_achieve not in GOAL_OPTIONS:
        raise HTTPException(status_code=400, detail="unknown_goal")

    finances = await get_finances(db, account.id)
    for name, value in payload.model_dump(exclude_unset=True).items():
        if value is not None:
            setattr(finances, name, value)
    finances.updated_at = datetime.utcnow()
    await db.flush()
    return finances_out(finances)


@router.post("/extract")
async def extract_amount(
    payload: AmountIn,
    account: Account = Depends(get_current_account),
    db: AsyncSession = Depends(get_db),
):
    if payload.kind not in AMOUNT_KINDS:
        raise HTTPException(status_code=400, detail="unknown_amount_kind")
    try:
        amount = await extractor.extract_amount(payload.text, payload.kind)
    except ExtractionError as e:
        raise HTTPException(status_code=503, detail=str(e))
    finances = await set_amount(db, account.id, payload.kind, amount)
    return {"kind": payload.kind, "amount": amount, "finances": finances_out(finances)}


@router.get("/status")
async def status(account: Account = Depends(get_current_account), db: AsyncSession = Depends(get_db)):
    return finance_status(await get_finances(db, account.id))


@router.get("/goals")
async def goal_options():
    return {"goals": GOAL_OPTIONS}
