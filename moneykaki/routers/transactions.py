from __future__ import annotations

import base64
import binascii
import datetime as dt
from decimal import Decimal
from typing import Literal

from fastapi import APIRouter, Depends, HTTPException
from loguru import logger
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select, func

from moneykaki.core.errors import NotFound
from moneykaki.db import get_db
from moneykaki.deps import get_current_account
from moneykaki.models.account import Account
from moneykaki.models.finance import Transaction, TYPE_EXPENSE, TYPE_INCOME
from moneykaki.services.extraction import (
    CATEGORIES, ExtractedTransaction, ExtractionError, extractor,
)

router = APIRouter(prefix="/api/v1/transactions", tags=["transactions"])


class TransactionIn(BaseModel):
    type: Literal["income", "expense"]
    amount: Decimal = Field(gt=0)
    category: str | None = Field(default=None, max_length=64)
    description: str | None = Field(default=None, max_length=255)
    date: dt.datetime | None = None


class ExtractIn(BaseModel):
    text: str | None = Field(default=None, max_length=4000)
    image_url: str | None = Field(default=None, max_length=2048)
    image_base64: str | None = None


def transaction_out(t: Transaction) -> dict:
    return {
        "id": t.id,
        "type": t.type,
        "amount": t.amount,
        "category": t.category,
        "description": t.description,
        "date": t.date.isoformat() if t.date else None,
        "source": t.source,
    }


def _from_extracted(user_id: int, item: ExtractedTransaction, source: str) -> Transaction:
    when = dt.datetime.combine(item.date, dt.time()) if item.date else dt.datetime.utcnow()
    return Transaction(
        user_id=user_id,
        type=item.type,
        amount=item.amount,
        category=item.category if item.category in CATEGORIES else None,
        description=(item.description or "")[:255] or None,
        date=when,
        source=source,
    )


@router.get("/categories")
async def categories():
    return {"categories": CATEGORIES}


@router.post("", status_code=201)
async def create_transaction(
    payload: TransactionIn,
    account: Account = Depends(get_current_account),
    db: AsyncSession = Depends(get_db),
):
    t = Transaction(
        user_id=account.id,
        type=payload.type,
        amount=payload.amount,
        category=payload.category,
        description=payload.description,
        date=payload.date or dt.datetime.utcnow(),
        source="manual",
    )
    db.add(t)
    await db.flush()
    return transaction_out(t)


@router.post("/extract", status_code=201)
async def extract_and_log(
    payload: ExtractIn,
    account: Account = Depends(get_current_account),
    db: AsyncSession = Depends(get_db),
):
    image_bytes = None
    if payload.image_base64:
        try:
            image_bytes = base64.b64decode(payload.image_base64, validate=True)
        except (binascii.Error, ValueError):
            raise HTTPException(status_code=400, detail="invalid_image")
    if not (payload.text or payload.image_url or image_bytes):
        raise HTTPException(status_code=400, detail="text_or_image_required")

    try:
        items = await extractor.extract_transactions(
            text=payload.text, image_bytes=image_bytes, image_url=payload.image_url,
        )
    except ExtractionError as e:
        raise HTTPException(status_code=503, detail=str(e))

    source = "ai_text" if payload.text and not (image_bytes or payload.image_url) else "ai_image"
    rows = [_from_extracted(account.id, item, source) for item in items]
    db.add_all(rows)
    await db.flush()
    logger.info(f"Logged {len(rows)} extracted transaction(s) for account {account.id}")
    return {"count": len(rows), "transactions": [transaction_out(t) for t in rows]}


@router.get("")
async def list_transactions(
    start: dt.date | None = None,
    end: dt.date | None = None,
    type: Literal["income", "expense"] | None = None,
    account: Account = Depends(get_current_account),
    db: AsyncSession = Depends(get_db),
):
    stmt = select(Transaction).where(Transaction.user_id == account.id)
    if start:
        stmt = stmt.where(Transaction.date >= dt.datetime.combine(start, dt.time()))
    if end:
        # end date is inclusive
        stmt = stmt.where(Transaction.date < dt.datetime.combine(end + dt.timedelta(days=1), dt.time()))
    if type:
        stmt = stmt.where(Transaction.type == type)
    rows = (await db.execute(stmt.order_by(Transaction.date.desc(), Transaction.id.desc()))).scalars().all()

    income = sum((t.amount for t in rows if t.type == TYPE_INCOME), Decimal("0"))
    expense = sum((t.amount for t in rows if t.type == TYPE_EXPENSE), Decimal("0"))
    return {
        "income": income,
        "expense": expense,
        "transactions": [transaction_out(t) for t in rows],
    }


@router.get("/summary/categories")
async def expense_by_category(account: Account = Depends(get_current_account), db: AsyncSession = Depends(get_db)):
    rows = (await db.execute(
        select(Transaction.category, func.sum(Transaction.amount))
        .where(Transaction.user_id == account.id, Transaction.type == TYPE_EXPENSE)
        .group_by(Transaction.category)
    )).all()
    return [{"category": c or "Uncategorized", "total": total} for c, total in rows]


@router.delete("/{transaction_id}")
async def delete_transaction(
    transaction_id: int,
    account: Account = Depends(get_current_account),
    db: AsyncSession = Depends(get_db),
):
    t = (await db.execute(
        select(Transaction).where(Transaction.id == transaction_id, Transaction.user_id == account.id)
    )).scalar_one_or_none()
    if not t:
        raise NotFound("transaction", transaction_id)
    await db.delete(t)
    return {"ok": True}
