from __future__ import annotations

from datetime import datetime

from loguru import logger
from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from moneykaki.core.errors import NotFound, InsufficientInventory, InsufficientBalance
from moneykaki.models.merchant import Merchant, MerchantRedemption
from moneykaki.services.ledger_service import get_account, spend_points


async def redeem_merchant(db: AsyncSession, account_id: int, merchant_id: int) -> dict:
    """Swap points for one unit of a merchant voucher."""
    merchant = (await db.execute(select(Merchant).where(Merchant.id == merchant_id))).scalar_one_or_none()
    if not merchant:
        raise NotFound("merchant", merchant_id)
    if merchant.quantity <= 0:
        raise InsufficientInventory(needed=1, available=0)

    cost = int(merchant.points or 0)
    account = await get_account(db, account_id)
    if account.points < cost:
        raise InsufficientBalance(needed=cost, available=account.points, currency="points")

    result = await db.execute(
        update(Merchant)
        .where(Merchant.id == merchant_id, Merchant.quantity > 0)
        .values(quantity=Merchant.quantity - 1, updated_at=datetime.utcnow())
    )
    if result.rowcount != 1:
        raise InsufficientInventory(needed=1, available=0)

    balance = await spend_points(
        db, account_id, cost,
        reason="merchant_voucher", ref_type="merchant", ref_id=str(merchant_id),
    )
    db.add(MerchantRedemption(
        merchant_id=merchant_id,
        account_id=account_id,
        points_spent=cost,
        code=merchant.code,
    ))
    await db.flush()
    remaining = (await db.execute(select(Merchant.quantity).where(Merchant.id == merchant_id))).scalar_one()
    logger.info(f"Account {account_id} redeemed merchant {merchant_id} for {cost} points")
    return {
        "merchant_id": merchant_id,
        "name": merchant.name,
        "code": merchant.code,
        "points_spent": cost,
        "points_balance": balance,
        "remaining_quantity": remaining,
    }
