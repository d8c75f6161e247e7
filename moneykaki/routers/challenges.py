from __future__ import annotations

from decimal import Decimal

from fastapi import APIRouter, Depends, HTTPException
from loguru import logger
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select

from moneykaki.core.errors import NotFound
from moneykaki.db import get_db
from moneykaki.deps import get_current_account, get_current_advisor
from moneykaki.models.account import Account
from moneykaki.models.challenge import (
    Challenge, ChallengeClaim, DAILY_APP_OPEN_TITLE, DAILY_STREAK_TITLE,
)
from moneykaki.services.approval import state_of
from moneykaki.services.ledger_service import get_account
from moneykaki.services.redemption_service import (
    KIND_CHALLENGE, load_reward, redeem_advisor_reward, redeem_challenge,
)

router = APIRouter(prefix="/api/v1/challenges", tags=["challenges"])

DAILY_TITLES = (DAILY_APP_OPEN_TITLE, DAILY_STREAK_TITLE)


class ChallengeIn(BaseModel):
    user_id: int
    challenge_title: str = Field(min_length=1, max_length=128)
    points: int | None = Field(default=None, ge=0)
    reward_id: int | None = None
    quantity: int = Field(default=1, ge=1)
    overall_price: Decimal | None = Field(default=None, ge=0)


class ChallengeUpdateIn(BaseModel):
    challenge_title: str | None = Field(default=None, min_length=1, max_length=128)
    points: int | None = Field(default=None, ge=0)
    quantity: int | None = Field(default=None, ge=1)
    overall_price: Decimal | None = Field(default=None, ge=0)


class JoinDailyIn(BaseModel):
    challenge_title: str


def challenge_out(c: Challenge) -> dict:
    return {
        "id": c.id,
        "user_id": c.user_id,
        "created_by": c.created_by,
        "challenge_title": c.challenge_title,
        "points": c.points,
        "reward_id": c.reward_id,
        "quantity": c.quantity,
        "overall_price": c.overall_price,
        "details": c.details or {},
        "status": state_of(c).value,
        "reward_code": list(c.reward_code or []) if c.is_approved else [],
        "created_at": c.created_at.isoformat() if c.created_at else None,
    }


async def _owned(db: AsyncSession, challenge_id: int, advisor_id: int) -> Challenge:
    c = (await db.execute(
        select(Challenge)
        .where(Challenge.id == challenge_id, Challenge.created_by == advisor_id)
        .with_for_update()
    )).scalar_one_or_none()
    if not c:
        raise NotFound("challenge", challenge_id)
    return c


@router.post("", status_code=201)
async def create_challenge(
    payload: ChallengeIn,
    advisor: Account = Depends(get_current_advisor),
    db: AsyncSession = Depends(get_db),
):
    await get_account(db, payload.user_id)
    if payload.reward_id is not None:
        await load_reward(db, payload.reward_id)
    challenge = Challenge(
        user_id=payload.user_id,
        created_by=advisor.id,
        challenge_title=payload.challenge_title.strip(),
        points=payload.points,
        reward_id=payload.reward_id,
        quantity=payload.quantity,
        overall_price=payload.overall_price,
        details={},
        reward_code=[],
    )
    db.add(challenge)
    await db.flush()
    logger.info(f"Advisor {advisor.id} created challenge {challenge.id} for user {payload.user_id}")
    return challenge_out(challenge)


@router.post("/daily", status_code=201)
async def join_daily_challenge(
    payload: JoinDailyIn,
    account: Account = Depends(get_current_account),
    db: AsyncSession = Depends(get_db),
):
    if payload.challenge_title not in DAILY_TITLES:
        raise HTTPException(status_code=400, detail="unknown_daily_challenge")
    exists = (await db.execute(
        select(Challenge).where(
            Challenge.user_id == account.id,
            Challenge.challenge_title == payload.challenge_title,
            Challenge.is_redeemed == False,  # noqa: E712
        )
    )).scalar_one_or_none()
    if exists:
        raise HTTPException(status_code=409, detail="challenge_already_joined")

    details = {"current_streak": 0, "last_expense_date": None} if payload.challenge_title == DAILY_STREAK_TITLE else {}
    challenge = Challenge(
        user_id=account.id,
        challenge_title=payload.challenge_title,
        details=details,
        reward_code=[],
    )
    db.add(challenge)
    await db.flush()
    return challenge_out(challenge)


@router.get("")
async def list_created(advisor: Account = Depends(get_current_advisor), db: AsyncSession = Depends(get_db)):
    rows = (await db.execute(
        select(Challenge).where(Challenge.created_by == advisor.id).order_by(Challenge.created_at.desc())
    )).scalars().all()
    return [challenge_out(c) for c in rows]


@router.get("/mine")
async def list_mine(account: Account = Depends(get_current_account), db: AsyncSession = Depends(get_db)):
    rows = (await db.execute(
        select(Challenge).where(Challenge.user_id == account.id).order_by(Challenge.created_at.desc())
    )).scalars().all()
    return [challenge_out(c) for c in rows]


@router.get("/claims")
async def my_claims(account: Account = Depends(get_current_account), db: AsyncSession = Depends(get_db)):
    rows = (await db.execute(
        select(ChallengeClaim)
        .where(ChallengeClaim.user_id == account.id)
        .order_by(ChallengeClaim.claim_date.desc(), ChallengeClaim.id.desc())
        .limit(100)
    )).scalars().all()
    return [
        {
            "challenge_id": c.challenge_id,
            "claim_date": c.claim_date.isoformat(),
            "milestone": c.milestone,
            "points_awarded": c.points_awarded,
        }
        for c in rows
    ]


@router.get("/{challenge_id}")
async def get_challenge(challenge_id: int, account: Account = Depends(get_current_account), db: AsyncSession = Depends(get_db)):
    c = (await db.execute(select(Challenge).where(Challenge.id == challenge_id))).scalar_one_or_none()
    if not c or account.id not in (c.user_id, c.created_by):
        raise NotFound("challenge", challenge_id)
    return challenge_out(c)


@router.put("/{challenge_id}")
async def update_challenge(
    challenge_id: int,
    payload: ChallengeUpdateIn,
    advisor: Account = Depends(get_current_advisor),
    db: AsyncSession = Depends(get_db),
):
    c = await _owned(db, challenge_id, advisor.id)
    if c.is_approved:
        raise HTTPException(status_code=409, detail="challenge_already_approved")
    if payload.challenge_title is not None:
        c.challenge_title = payload.challenge_title.strip()
    if payload.points is not None:
        c.points = payload.points
    if payload.quantity is not None:
        c.quantity = payload.quantity
    if payload.overall_price is not None:
        c.overall_price = payload.overall_price
    await db.flush()
    return challenge_out(c)


@router.delete("/{challenge_id}")
async def delete_challenge(
    challenge_id: int,
    advisor: Account = Depends(get_current_advisor),
    db: AsyncSession = Depends(get_db),
):
    c = await _owned(db, challenge_id, advisor.id)
    if c.is_approved:
        # codes were already paid for
        raise HTTPException(status_code=409, detail="challenge_already_approved")
    await db.delete(c)
    return {"ok": True}


@router.post("/{challenge_id}/approve")
async def approve_challenge(
    challenge_id: int,
    advisor: Account = Depends(get_current_advisor),
    db: AsyncSession = Depends(get_db),
):
    result = await redeem_advisor_reward(db, advisor.id, challenge_id, kind=KIND_CHALLENGE)
    return {"ok": True, **result.to_dict()}


@router.post("/{challenge_id}/redeem")
async def redeem(
    challenge_id: int,
    account: Account = Depends(get_current_account),
    db: AsyncSession = Depends(get_db),
):
    result = await redeem_challenge(db, account.id, challenge_id)
    return result.to_dict()
