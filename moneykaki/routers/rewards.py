from __future__ import annotations

from datetime import datetime
from decimal import Decimal

from fastapi import APIRouter, Depends, HTTPException
from loguru import logger
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select

from moneykaki.db import get_db
from moneykaki.deps import get_current_account, get_current_admin
from moneykaki.models.account import Account, ROLE_ADMIN
from moneykaki.models.reward import Reward
from moneykaki.services import code_pool
from moneykaki.services.redemption_service import load_reward

router = APIRouter(prefix="/api/v1/rewards", tags=["rewards"])


class RewardIn(BaseModel):
    name: str = Field(min_length=1, max_length=128)
    picture: str | None = Field(default=None, max_length=512)
    price: Decimal = Field(ge=0)
    codes: list[str] = Field(default_factory=list)


class RewardUpdateIn(BaseModel):
    name: str | None = Field(default=None, min_length=1, max_length=128)
    picture: str | None = Field(default=None, max_length=512)
    price: Decimal | None = Field(default=None, ge=0)


class CodeIn(BaseModel):
    code: str = Field(min_length=1, max_length=128)


class CodesIn(BaseModel):
    codes: list[str] = Field(min_length=1)


def reward_out(r: Reward, with_codes: bool = False) -> dict:
    pool = code_pool.parse_codes(r.codes)
    out = {
        "id": r.id,
        "name": r.name,
        "picture": r.picture,
        "price": r.price,
        "available_quantity": code_pool.available_quantity(pool),
        "total_codes": len(pool),
    }
    if with_codes:
        out["codes"] = code_pool.dump_codes(pool)
    return out


@router.post("", status_code=201)
async def create_reward(payload: RewardIn, admin: Account = Depends(get_current_admin), db: AsyncSession = Depends(get_db)):
    pool = code_pool.add_codes([], payload.codes)
    reward = Reward(
        name=payload.name.strip(),
        picture=payload.picture,
        price=payload.price,
        codes=code_pool.dump_codes(pool),
    )
    db.add(reward)
    await db.flush()
    logger.info(f"Admin {admin.id} created reward {reward.id} with {len(pool)} code(s)")
    return reward_out(reward, with_codes=True)


@router.get("")
async def list_rewards(_: Account = Depends(get_current_account), db: AsyncSession = Depends(get_db)):
    rows = (await db.execute(select(Reward).order_by(Reward.id.desc()))).scalars().all()
    return [reward_out(r) for r in rows]


@router.get("/available-quantity")
async def list_available(_: Account = Depends(get_current_account), db: AsyncSession = Depends(get_db)):
    rows = (await db.execute(select(Reward).order_by(Reward.id))).scalars().all()
    return [
        {"id": r.id, "name": r.name, "available_quantity": code_pool.available_quantity(code_pool.parse_codes(r.codes))}
        for r in rows
    ]


@router.get("/{reward_id}")
async def get_reward(reward_id: int, account: Account = Depends(get_current_account), db: AsyncSession = Depends(get_db)):
    reward = await load_reward(db, reward_id)
    return reward_out(reward, with_codes=account.role == ROLE_ADMIN)


@router.put("/{reward_id}")
async def update_reward(
    reward_id: int,
    payload: RewardUpdateIn,
    _: Account = Depends(get_current_admin),
    db: AsyncSession = Depends(get_db),
):
    reward = await load_reward(db, reward_id, for_update=True)
    if payload.name is not None:
        reward.name = payload.name.strip()
    if payload.picture is not None:
        reward.picture = payload.picture
    if payload.price is not None:
        reward.price = payload.price
    reward.updated_at = datetime.utcnow()
    await db.flush()
    return reward_out(reward, with_codes=True)


@router.delete("/{reward_id}")
async def delete_reward(reward_id: int, admin: Account = Depends(get_current_admin), db: AsyncSession = Depends(get_db)):
    reward = await load_reward(db, reward_id, for_update=True)
    await db.delete(reward)
    logger.info(f"Admin {admin.id} deleted reward {reward_id}")
    return {"ok": True}


async def _extend_pool(db: AsyncSession, reward_id: int, new_codes: list[str]) -> dict:
    reward = await load_reward(db, reward_id, for_update=True)
    pool = code_pool.parse_codes(reward.codes)
    before = len(pool)
    pool = code_pool.add_codes(pool, new_codes)
    reward.codes = code_pool.dump_codes(pool)
    reward.updated_at = datetime.utcnow()
    await db.flush()
    return {"ok": True, "added": len(pool) - before, "reward": reward_out(reward, with_codes=True)}


@router.post("/{reward_id}/code")
async def add_reward_code(
    reward_id: int,
    payload: CodeIn,
    _: Account = Depends(get_current_admin),
    db: AsyncSession = Depends(get_db),
):
    return await _extend_pool(db, reward_id, [payload.code])


@router.post("/{reward_id}/codes")
async def add_reward_codes_bulk(
    reward_id: int,
    payload: CodesIn,
    _: Account = Depends(get_current_admin),
    db: AsyncSession = Depends(get_db),
):
    return await _extend_pool(db, reward_id, payload.codes)


@router.delete("/{reward_id}/codes")
async def remove_reward_code(
    reward_id: int,
    payload: CodeIn,
    _: Account = Depends(get_current_admin),
    db: AsyncSession = Depends(get_db),
):
    reward = await load_reward(db, reward_id, for_update=True)
    try:
        pool = code_pool.remove_code(code_pool.parse_codes(reward.codes), payload.code)
    except KeyError:
        raise HTTPException(status_code=404, detail="code_not_found")
    except ValueError as e:
        raise HTTPException(status_code=409, detail=str(e))
    reward.codes = code_pool.dump_codes(pool)
    reward.updated_at = datetime.utcnow()
    await db.flush()
    return {"ok": True, "reward": reward_out(reward, with_codes=True)}
