from __future__ import annotations

from datetime import datetime

from fastapi import APIRouter, Depends
from loguru import logger
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select

from moneykaki.core.errors import NotFound
from moneykaki.db import get_db
from moneykaki.deps import get_current_account, get_current_admin
from moneykaki.models.account import Account
from moneykaki.models.merchant import Merchant
from moneykaki.services.merchant_service import redeem_merchant

router = APIRouter(prefix="/api/v1/merchants", tags=["merchants"])


class MerchantIn(BaseModel):
    name: str = Field(min_length=1, max_length=128)
    image: str | None = Field(default=None, max_length=512)
    discount: str | None = Field(default=None, max_length=64)
    points: int = Field(default=0, ge=0)
    quantity: int = Field(default=0, ge=0)
    code: str | None = Field(default=None, max_length=128)


class MerchantUpdateIn(BaseModel):
    name: str | None = Field(default=None, min_length=1, max_length=128)
    image: str | None = Field(default=None, max_length=512)
    discount: str | None = Field(default=None, max_length=64)
    points: int | None = Field(default=None, ge=0)
    quantity: int | None = Field(default=None, ge=0)
    code: str | None = Field(default=None, max_length=128)


def merchant_out(m: Merchant, with_code: bool = False) -> dict:
    out = {
        "id": m.id,
        "name": m.name,
        "image": m.image,
        "discount": m.discount,
        "points": m.points,
        "quantity": m.quantity,
    }
    if with_code:
        out["code"] = m.code
    return out


async def _get(db: AsyncSession, merchant_id: int) -> Merchant:
    m = (await db.execute(select(Merchant).where(Merchant.id == merchant_id))).scalar_one_or_none()
    if not m:
        raise NotFound("merchant", merchant_id)
    return m


@router.post("", status_code=201)
async def create_merchant(payload: MerchantIn, admin: Account = Depends(get_current_admin), db: AsyncSession = Depends(get_db)):
    m = Merchant(**payload.model_dump())
    db.add(m)
    await db.flush()
    logger.info(f"Admin {admin.id} created merchant {m.id} ({m.name})")
    return merchant_out(m, with_code=True)


@router.get("")
async def list_merchants(_: Account = Depends(get_current_admin), db: AsyncSession = Depends(get_db)):
    rows = (await db.execute(select(Merchant).order_by(Merchant.id.desc()))).scalars().all()
    return [merchant_out(m, with_code=True) for m in rows]


@router.get("/available")
async def list_available(_: Account = Depends(get_current_account), db: AsyncSession = Depends(get_db)):
    # voucher codes are only revealed on redemption
    rows = (await db.execute(
        select(Merchant).where(Merchant.quantity > 0).order_by(Merchant.points)
    )).scalars().all()
    return [merchant_out(m) for m in rows]


@router.get("/{merchant_id}")
async def get_merchant(merchant_id: int, _: Account = Depends(get_current_account), db: AsyncSession = Depends(get_db)):
    return merchant_out(await _get(db, merchant_id))


@router.put("/{merchant_id}")
async def update_merchant(
    merchant_id: int,
    payload: MerchantUpdateIn,
    _: Account = Depends(get_current_admin),
    db: AsyncSession = Depends(get_db),
):
    m = await _get(db, merchant_id)
    for key, value in payload.model_dump(exclude_unset=True).items():
        if value is not None:
            setattr(m, key, value)
    m.updated_at = datetime.utcnow()
    await db.flush()
    return merchant_out(m, with_code=True)


@router.delete("/{merchant_id}")
async def delete_merchant(merchant_id: int, _: Account = Depends(get_current_admin), db: AsyncSession = Depends(get_db)):
    await db.delete(await _get(db, merchant_id))
    return {"ok": True}


@router.post("/{merchant_id}/redeem")
async def redeem(merchant_id: int, account: Account = Depends(get_current_account), db: AsyncSession = Depends(get_db)):
    return await redeem_merchant(db, account.id, merchant_id)
