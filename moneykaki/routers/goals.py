from __future__ import annotations

from datetime import date
from decimal import Decimal

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select, func

from moneykaki.core.errors import NotFound
from moneykaki.db import get_db
from moneykaki.deps import get_current_account
from moneykaki.models.account import Account
from moneykaki.models.finance import Goal, Saving

router = APIRouter(prefix="/api/v1", tags=["goals"])


class GoalIn(BaseModel):
    goal_for: str = Field(min_length=1, max_length=128)
    amount_to_save: Decimal = Field(gt=0)
    deadline: date


class GoalUpdateIn(BaseModel):
    goal_for: str | None = Field(default=None, min_length=1, max_length=128)
    amount_to_save: Decimal | None = Field(default=None, gt=0)
    deadline: date | None = None


class SavingIn(BaseModel):
    goal_id: int
    title: str = Field(min_length=1, max_length=128)
    amount_saved: Decimal = Field(gt=0)


class SavingUpdateIn(BaseModel):
    title: str | None = Field(default=None, min_length=1, max_length=128)
    amount_saved: Decimal | None = Field(default=None, gt=0)


def goal_out(g: Goal, saved: Decimal) -> dict:
    target = Decimal(g.amount_to_save)
    progress = min(saved / target * 100, Decimal("100")) if target > 0 else Decimal("0")
    return {
        "id": g.id,
        "goal_for": g.goal_for,
        "amount_to_save": g.amount_to_save,
        "deadline": g.deadline.isoformat(),
        "total_saved": saved,
        "progress_percent": round(progress, 2),
    }


def saving_out(s: Saving) -> dict:
    return {"id": s.id, "goal_id": s.goal_id, "title": s.title, "amount_saved": s.amount_saved}


async def _goal(db: AsyncSession, goal_id: int, user_id: int) -> Goal:
    g = (await db.execute(select(Goal).where(Goal.id == goal_id, Goal.user_id == user_id))).scalar_one_or_none()
    if not g:
        raise NotFound("goal", goal_id)
    return g


async def _saved(db: AsyncSession, goal_id: int) -> Decimal:
    total = (await db.execute(
        select(func.coalesce(func.sum(Saving.amount_saved), 0)).where(Saving.goal_id == goal_id)
    )).scalar_one()
    return Decimal(str(total))


async def _saving(db: AsyncSession, saving_id: int, user_id: int) -> Saving:
    s = (await db.execute(
        select(Saving).join(Goal, Goal.id == Saving.goal_id)
        .where(Saving.id == saving_id, Goal.user_id == user_id)
    )).scalar_one_or_none()
    if not s:
        raise NotFound("saving", saving_id)
    return s


@router.post("/goals", status_code=201)
async def create_goal(payload: GoalIn, account: Account = Depends(get_current_account), db: AsyncSession = Depends(get_db)):
    g = Goal(user_id=account.id, goal_for=payload.goal_for.strip(),
             amount_to_save=payload.amount_to_save, deadline=payload.deadline)
    db.add(g)
    await db.flush()
    return goal_out(g, Decimal("0"))


@router.get("/goals")
async def list_goals(account: Account = Depends(get_current_account), db: AsyncSession = Depends(get_db)):
    rows = (await db.execute(
        select(Goal, func.coalesce(func.sum(Saving.amount_saved), 0))
        .outerjoin(Saving, Saving.goal_id == Goal.id)
        .where(Goal.user_id == account.id)
        .group_by(Goal.id)
        .order_by(Goal.deadline)
    )).all()
    return [goal_out(g, Decimal(str(saved))) for g, saved in rows]


@router.put("/goals/{goal_id}")
async def update_goal(
    goal_id: int,
    payload: GoalUpdateIn,
    account: Account = Depends(get_current_account),
    db: AsyncSession = Depends(get_db),
):
    g = await _goal(db, goal_id, account.id)
    if payload.goal_for is not None:
        g.goal_for = payload.goal_for.strip()
    if payload.amount_to_save is not None:
        g.amount_to_save = payload.amount_to_save
    if payload.deadline is not None:
        g.deadline = payload.deadline
    await db.flush()
    return goal_out(g, await _saved(db, g.id))


@router.delete("/goals/{goal_id}")
async def delete_goal(goal_id: int, account: Account = Depends(get_current_account), db: AsyncSession = Depends(get_db)):
    g = await _goal(db, goal_id, account.id)
    for s in (await db.execute(select(Saving).where(Saving.goal_id == g.id))).scalars().all():
        await db.delete(s)
    await db.delete(g)
    return {"ok": True}


@router.post("/savings", status_code=201)
async def create_saving(payload: SavingIn, account: Account = Depends(get_current_account), db: AsyncSession = Depends(get_db)):
    g = await _goal(db, payload.goal_id, account.id)
    s = Saving(goal_id=g.id, title=payload.title.strip(), amount_saved=payload.amount_saved)
    db.add(s)
    await db.flush()
    return {"saving": saving_out(s), "goal": goal_out(g, await _saved(db, g.id))}


@router.get("/savings/{goal_id}")
async def list_savings(goal_id: int, account: Account = Depends(get_current_account), db: AsyncSession = Depends(get_db)):
    g = await _goal(db, goal_id, account.id)
    rows = (await db.execute(select(Saving).where(Saving.goal_id == g.id).order_by(Saving.id))).scalars().all()
    return [saving_out(s) for s in rows]


@router.put("/savings/{saving_id}")
async def update_saving(
    saving_id: int,
    payload: SavingUpdateIn,
    account: Account = Depends(get_current_account),
    db: AsyncSession = Depends(get_db),
):
    s = await _saving(db, saving_id, account.id)
    if payload.title is not None:
        s.title = payload.title.strip()
    if payload.amount_saved is not None:
        s.amount_saved = payload.amount_saved
    await db.flush()
    return saving_out(s)


@router.delete("/savings/{saving_id}")
async def delete_saving(saving_id: int, account: Account = Depends(get_current_account), db: AsyncSession = Depends(get_db)):
    await db.delete(await _saving(db, saving_id, account.id))
    return {"ok": True}
