from __future__ import annotations

from datetime import datetime

from fastapi import APIRouter, Depends, HTTPException
from loguru import logger
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select

from moneykaki.core.errors import NotFound
from moneykaki.db import get_db
from moneykaki.deps import get_current_account, get_current_advisor
from moneykaki.models.account import Account
from moneykaki.models.reward import RewardAssignment
from moneykaki.services.approval import state_of
from moneykaki.services.ledger_service import get_account
from moneykaki.services.redemption_service import (
    KIND_ASSIGNMENT, load_reward, redeem_advisor_reward, redeem_user_reward,
)
from moneykaki.routers.wrappings import load_wrapping

router = APIRouter(prefix="/api/v1/assignments", tags=["assignments"])


class AssignmentIn(BaseModel):
    assignee_id: int
    reward_id: int
    quantity: int = Field(default=1, ge=1)
    schedule_type: str = Field(default="now", pattern="^(now|scheduled)$")
    scheduled_for: datetime | None = None
    wrapping_id: int | None = None
    headline: str | None = Field(default=None, max_length=255)
    greeting: str | None = Field(default=None, max_length=1024)
    # advisor-initiated gift skips the user request
    sent_to_advisor: bool = False


def assignment_out(a: RewardAssignment) -> dict:
    return {
        "id": a.id,
        "created_by": a.created_by,
        "assignee_id": a.assignee_id,
        "reward_id": a.reward_id,
        "quantity": a.quantity,
        "schedule_type": a.schedule_type,
        "scheduled_for": a.scheduled_for.isoformat() if a.scheduled_for else None,
        "wrapping_id": a.wrapping_id,
        "headline": a.headline,
        "greeting": a.greeting,
        "status": state_of(a).value,
        "reward_code": list(a.reward_code or []) if a.is_approved else [],
        "created_at": a.created_at.isoformat() if a.created_at else None,
    }


@router.post("", status_code=201)
async def create_assignment(
    payload: AssignmentIn,
    advisor: Account = Depends(get_current_advisor),
    db: AsyncSession = Depends(get_db),
):
    if payload.schedule_type == "scheduled" and not payload.scheduled_for:
        raise HTTPException(status_code=400, detail="scheduled_for_required")
    await get_account(db, payload.assignee_id)
    await load_reward(db, payload.reward_id)
    if payload.wrapping_id is not None:
        await load_wrapping(db, payload.wrapping_id)

    assignment = RewardAssignment(
        created_by=advisor.id,
        assignee_id=payload.assignee_id,
        reward_id=payload.reward_id,
        quantity=payload.quantity,
        schedule_type=payload.schedule_type,
        scheduled_for=payload.scheduled_for,
        wrapping_id=payload.wrapping_id,
        headline=payload.headline,
        greeting=payload.greeting,
        sent_to_advisor=payload.sent_to_advisor,
        reward_code=[],
    )
    db.add(assignment)
    await db.flush()
    logger.info(f"Advisor {advisor.id} assigned reward {payload.reward_id} x{payload.quantity} to {payload.assignee_id}")
    return assignment_out(assignment)


@router.get("/created")
async def list_created(advisor: Account = Depends(get_current_advisor), db: AsyncSession = Depends(get_db)):
    rows = (await db.execute(
        select(RewardAssignment)
        .where(RewardAssignment.created_by == advisor.id)
        .order_by(RewardAssignment.id.desc())
    )).scalars().all()
    return [assignment_out(a) for a in rows]


@router.get("/mine")
async def list_mine(account: Account = Depends(get_current_account), db: AsyncSession = Depends(get_db)):
    rows = (await db.execute(
        select(RewardAssignment)
        .where(RewardAssignment.assignee_id == account.id)
        .order_by(RewardAssignment.id.desc())
    )).scalars().all()
    return [assignment_out(a) for a in rows]


@router.get("/notifications")
async def notifications(account: Account = Depends(get_current_account), db: AsyncSession = Depends(get_db)):
    # approved but not yet opened by the user
    rows = (await db.execute(
        select(RewardAssignment)
        .where(
            RewardAssignment.assignee_id == account.id,
            RewardAssignment.is_approved == True,  # noqa: E712
            RewardAssignment.is_redeemed == False,  # noqa: E712
        )
        .order_by(RewardAssignment.updated_at.desc())
    )).scalars().all()
    return [
        {"id": a.id, "reward_id": a.reward_id, "headline": a.headline, "greeting": a.greeting}
        for a in rows
    ]


@router.get("/{assignment_id}")
async def get_assignment(assignment_id: int, account: Account = Depends(get_current_account), db: AsyncSession = Depends(get_db)):
    a = (await db.execute(select(RewardAssignment).where(RewardAssignment.id == assignment_id))).scalar_one_or_none()
    if not a or account.id not in (a.created_by, a.assignee_id):
        raise NotFound("assignment", assignment_id)
    return assignment_out(a)


@router.delete("/{assignment_id}")
async def delete_assignment(
    assignment_id: int,
    advisor: Account = Depends(get_current_advisor),
    db: AsyncSession = Depends(get_db),
):
    a = (await db.execute(
        select(RewardAssignment)
        .where(RewardAssignment.id == assignment_id, RewardAssignment.created_by == advisor.id)
        .with_for_update()
    )).scalar_one_or_none()
    if not a:
        raise NotFound("assignment", assignment_id)
    if a.is_approved:
        # codes were already paid for
        raise HTTPException(status_code=409, detail="assignment_already_approved")
    await db.delete(a)
    return {"ok": True}


@router.post("/{assignment_id}/approve")
async def approve_assignment(
    assignment_id: int,
    advisor: Account = Depends(get_current_advisor),
    db: AsyncSession = Depends(get_db),
):
    result = await redeem_advisor_reward(db, advisor.id, assignment_id, kind=KIND_ASSIGNMENT)
    return {"ok": True, **result.to_dict()}


@router.post("/{assignment_id}/redeem")
async def redeem_assignment(
    assignment_id: int,
    account: Account = Depends(get_current_account),
    db: AsyncSession = Depends(get_db),
):
    result = await redeem_user_reward(db, account.id, assignment_id)
    return result.to_dict()
