from __future__ import annotations

from datetime import datetime
from decimal import Decimal

from loguru import logger
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from moneykaki.models.finance import UserFinances
from moneykaki.services.extraction import AMOUNT_KINDS

GOAL_OPTIONS = ["Retirement", "Housing", "Business", "Education", "Vacation"]

# onboarding is complete once these are known
REQUIRED_FIELDS = ("monthly_income", "monthly_expense", "amount_to_save", "goal_to_achieve")


async def get_finances(db: AsyncSession, user_id: int) -> UserFinances:
    finances = (await db.execute(
        select(UserFinances).where(UserFinances.user_id == user_id)
    )).scalar_one_or_none()
    if not finances:
        finances = UserFinances(user_id=user_id, selected_categories=[])
        db.add(finances)
        await db.flush()
    return finances


async def set_amount(db: AsyncSession, user_id: int, kind: str, amount: Decimal) -> UserFinances:
    if kind not in AMOUNT_KINDS:
        raise ValueError(f"unknown amount kind: {kind}")
    finances = await get_finances(db, user_id)
    setattr(finances, kind, Decimal(amount))
    finances.updated_at = datetime.utcnow()
    await db.flush()
    logger.debug(f"Saved {kind}={amount} for account {user_id}")
    return finances


def finance_status(finances: UserFinances) -> dict:
    missing = [name for name in REQUIRED_FIELDS if getattr(finances, name) is None]
    income = finances.monthly_income
    expense = finances.monthly_expense
    leftover = income - expense if income is not None and expense is not None else None
    return {
        "is_complete": not missing,
        "missing": missing,
        "has_categories": bool(finances.selected_categories),
        "monthly_leftover": leftover,
        # the savings target fits in what is left each month
        "target_reachable": (
            leftover >= finances.amount_to_save
            if leftover is not None and finances.amount_to_save is not None
            else None
        ),
    }


def finances_out(finances: UserFinances) -> dict:
    return {
        "monthly_income": finances.monthly_income,
        "monthly_expense": finances.monthly_expense,
        "amount_to_save": finances.amount_to_save,
        "today_spend": finances.today_spend,
        "selected_categories": list(finances.selected_categories or []),
        "goal_to_achieve": finances.goal_to_achieve,
        "updated_at": finances.updated_at.isoformat() if finances.updated_at else None,
    }
