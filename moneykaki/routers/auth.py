from __future__ import annotations

from datetime import datetime

from fastapi import APIRouter, Depends, HTTPException, Response
from loguru import logger
from pydantic import BaseModel, EmailStr, Field
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select, or_

from moneykaki.core.settings import settings
from moneykaki.db import get_db
from moneykaki.deps import get_current_account
from moneykaki.models.account import (
    Account, ROLE_USER, ROLE_ADVISOR, STATUS_ACTIVE, STATUS_INACTIVE,
)
from moneykaki.models.ledger import BalanceLedger
from moneykaki.services.account_service import close_account
from moneykaki.services.ledger_service import add_points
from moneykaki.services.security import hash_password, verify_password, create_account_token


router = APIRouter(prefix="/api/v1/auth", tags=["auth"])


class RegisterIn(BaseModel):
    email: EmailStr
    username: str = Field(min_length=2, max_length=64)
    password: str = Field(min_length=6, max_length=72)
    full_name: str | None = Field(default=None, max_length=128)
    phone: str | None = Field(default=None, max_length=32)


class LoginIn(BaseModel):
    identity: str = Field(description="email or username")
    password: str


class ChangeAdvisorIn(BaseModel):
    advisor_id: int


def account_out(a: Account) -> dict:
    return {
        "id": a.id,
        "email": a.email,
        "username": a.username,
        "full_name": a.full_name,
        "phone": a.phone,
        "role": a.role,
        "status": a.status,
        "credits": a.credits,
        "points": a.points,
        "advisor_id": a.advisor_id,
    }


def _set_cookie(response: Response, account: Account) -> str:
    token = create_account_token(account.id, account.role)
    response.set_cookie(settings.COOKIE_NAME, token, httponly=True, samesite="lax")
    return token


async def _create_account(db: AsyncSession, payload: RegisterIn, role: str, status: str) -> Account:
    email = payload.email.strip().lower()
    username = payload.username.strip()
    if not username:
        raise HTTPException(status_code=400, detail="username_required")

    exists = (await db.execute(
        select(Account).where(or_(Account.email == email, Account.username == username))
    )).scalar_one_or_none()
    if exists:
        raise HTTPException(status_code=409, detail="account_exists")

    account = Account(
        email=email,
        username=username,
        password_hash=hash_password(payload.password),
        full_name=(payload.full_name.strip() if payload.full_name else None),
        phone=(payload.phone.strip() if payload.phone else None),
        role=role,
        status=status,
        created_at=datetime.utcnow(),
    )
    db.add(account)
    await db.flush()
    return account


@router.post("/register", status_code=201)
async def register(payload: RegisterIn, response: Response, db: AsyncSession = Depends(get_db)):
    account = await _create_account(db, payload, ROLE_USER, STATUS_ACTIVE)

    if settings.SIGNUP_BONUS_POINTS > 0:
        await add_points(db, account.id, settings.SIGNUP_BONUS_POINTS,
                         reason="signup_bonus", ref_type="account", ref_id=str(account.id))
        await db.refresh(account)

    token = _set_cookie(response, account)
    logger.info(f"Registered user {account.id} ({account.username})")
    return {"ok": True, "token": token, "account": account_out(account)}


@router.post("/advisors/register", status_code=201)
async def register_advisor(payload: RegisterIn, db: AsyncSession = Depends(get_db)):
    # advisors wait for an admin to activate them
    account = await _create_account(db, payload, ROLE_ADVISOR, STATUS_INACTIVE)
    logger.info(f"Advisor {account.id} ({account.username}) registered, pending activation")
    return {"ok": True, "account": account_out(account)}


@router.post("/login")
async def login(payload: LoginIn, response: Response, db: AsyncSession = Depends(get_db)):
    identity = payload.identity.strip()
    account = (await db.execute(
        select(Account).where(or_(Account.email == identity.lower(), Account.username == identity))
    )).scalar_one_or_none()
    if not account or not verify_password(payload.password, account.password_hash):
        raise HTTPException(status_code=400, detail="invalid_credentials")
    if not account.is_active:
        raise HTTPException(status_code=403, detail="account_inactive")

    account.last_login_at = datetime.utcnow()
    token = _set_cookie(response, account)
    return {"ok": True, "token": token, "account": account_out(account)}


@router.post("/logout")
async def logout(response: Response):
    response.delete_cookie(settings.COOKIE_NAME)
    return {"ok": True}


@router.get("/me")
async def me(account: Account = Depends(get_current_account)):
    return account_out(account)


@router.get("/balance")
async def my_balance(account: Account = Depends(get_current_account), db: AsyncSession = Depends(get_db)):
    ledger = (await db.execute(
        select(BalanceLedger)
        .where(BalanceLedger.account_id == account.id)
        .order_by(BalanceLedger.id.desc())
        .limit(50)
    )).scalars().all()
    return {
        "credits": account.credits,
        "points": account.points,
        "ledger": [
            {
                "currency": l.currency,
                "change": l.change,
                "reason": l.reason,
                "note": l.note,
                "created_at": l.created_at.isoformat(),
            }
            for l in ledger
        ],
    }


@router.get("/advisor")
async def my_advisor(account: Account = Depends(get_current_account), db: AsyncSession = Depends(get_db)):
    if not account.advisor_id:
        return {"advisor": None}
    advisor = (await db.execute(select(Account).where(Account.id == account.advisor_id))).scalar_one_or_none()
    return {"advisor": account_out(advisor) if advisor else None}


@router.put("/advisor")
async def change_advisor(
    payload: ChangeAdvisorIn,
    account: Account = Depends(get_current_account),
    db: AsyncSession = Depends(get_db),
):
    advisor = (await db.execute(
        select(Account).where(
            Account.id == payload.advisor_id,
            Account.role == ROLE_ADVISOR,
            Account.status == STATUS_ACTIVE,
        )
    )).scalar_one_or_none()
    if not advisor:
        raise HTTPException(status_code=404, detail="advisor_not_found")
    account.advisor_id = advisor.id
    return {"ok": True, "advisor_id": advisor.id}


@router.delete("/me")
async def delete_own_account(
    response: Response,
    account: Account = Depends(get_current_account),
    db: AsyncSession = Depends(get_db),
):
    await close_account(db, account.id)
    response.delete_cookie(settings.COOKIE_NAME)
    return {"ok": True}
