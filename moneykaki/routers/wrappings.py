from __future__ import annotations

from fastapi import APIRouter, Depends
from loguru import logger
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select, update

from moneykaki.core.errors import NotFound
from moneykaki.db import get_db
from moneykaki.deps import get_current_account, get_current_admin
from moneykaki.models.account import Account
from moneykaki.models.reward import RewardAssignment
from moneykaki.models.wrapping import Wrapping

router = APIRouter(prefix="/api/v1/wrappings", tags=["wrappings"])


class WrappingIn(BaseModel):
    image: str = Field(min_length=1, max_length=512)
    name: str | None = Field(default=None, max_length=64)


def wrapping_out(w: Wrapping) -> dict:
    return {
        "id": w.id,
        "image": w.image,
        "name": w.name,
        "created_at": w.created_at.isoformat() if w.created_at else None,
    }


async def load_wrapping(db: AsyncSession, wrapping_id: int) -> Wrapping:
    w = (await db.execute(select(Wrapping).where(Wrapping.id == wrapping_id))).scalar_one_or_none()
    if not w:
        raise NotFound("wrapping", wrapping_id)
    return w


@router.post("", status_code=201)
async def create_wrapping(payload: WrappingIn, admin: Account = Depends(get_current_admin), db: AsyncSession = Depends(get_db)):
    w = Wrapping(image=payload.image.strip(), name=payload.name)
    db.add(w)
    await db.flush()
    logger.info(f"Admin {admin.id} added gift wrapping {w.id}")
    return wrapping_out(w)


@router.get("")
async def list_wrappings(_: Account = Depends(get_current_account), db: AsyncSession = Depends(get_db)):
    rows = (await db.execute(select(Wrapping).order_by(Wrapping.id))).scalars().all()
    return [wrapping_out(w) for w in rows]


@router.get("/{wrapping_id}")
async def get_wrapping(wrapping_id: int, _: Account = Depends(get_current_account), db: AsyncSession = Depends(get_db)):
    return wrapping_out(await load_wrapping(db, wrapping_id))


@router.delete("/{wrapping_id}")
async def delete_wrapping(wrapping_id: int, admin: Account = Depends(get_current_admin), db: AsyncSession = Depends(get_db)):
    w = await load_wrapping(db, wrapping_id)
    # gifts already sent keep their message, just without the wrapping
    await db.execute(
        update(RewardAssignment).where(RewardAssignment.wrapping_id == wrapping_id).values(wrapping_id=None)
    )
    await db.delete(w)
    logger.info(f"Admin {admin.id} deleted gift wrapping {wrapping_id}")
    return {"ok": True}
