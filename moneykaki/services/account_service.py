from __future__ import annotations

from loguru import logger
from sqlalchemy import delete, update, select, or_
from sqlalchemy.ext.asyncio import AsyncSession

from moneykaki.models.account import Account
from moneykaki.models.billing import PaymentOrder
from moneykaki.models.challenge import Challenge, ChallengeClaim
from moneykaki.models.finance import Transaction, Goal, Saving, UserFinances
from moneykaki.models.ledger import BalanceLedger
from moneykaki.models.merchant import MerchantRedemption
from moneykaki.models.reward import RewardAssignment
from moneykaki.services.ledger_service import get_account


async def close_account(db: AsyncSession, account_id: int) -> None:
    """Delete an account and everything it owns."""
    await get_account(db, account_id)

    challenge_ids = select(Challenge.id).where(Challenge.user_id == account_id)
    goal_ids = select(Goal.id).where(Goal.user_id == account_id)

    await db.execute(delete(ChallengeClaim).where(
        or_(ChallengeClaim.user_id == account_id, ChallengeClaim.challenge_id.in_(challenge_ids))
    ))
    await db.execute(delete(Challenge).where(Challenge.user_id == account_id))
    await db.execute(update(Challenge).where(Challenge.created_by == account_id).values(created_by=None))
    await db.execute(delete(RewardAssignment).where(
        or_(RewardAssignment.assignee_id == account_id, RewardAssignment.created_by == account_id)
    ))
    await db.execute(delete(Saving).where(Saving.goal_id.in_(goal_ids)))
    await db.execute(delete(Goal).where(Goal.user_id == account_id))
    await db.execute(delete(Transaction).where(Transaction.user_id == account_id))
    await db.execute(delete(UserFinances).where(UserFinances.user_id == account_id))
    await db.execute(delete(MerchantRedemption).where(MerchantRedemption.account_id == account_id))
    await db.execute(delete(PaymentOrder).where(PaymentOrder.account_id == account_id))
    await db.execute(delete(BalanceLedger).where(BalanceLedger.account_id == account_id))
    await db.execute(update(Account).where(Account.advisor_id == account_id).values(advisor_id=None))
    await db.execute(delete(Account).where(Account.id == account_id))
    await db.flush()
    logger.info(f"Closed account {account_id} and removed its records")
