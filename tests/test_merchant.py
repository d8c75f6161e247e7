"""
Tests for merchant voucher redemption
"""
import pytest
from sqlalchemy import select

from moneykaki.core.errors import InsufficientBalance, InsufficientInventory, NotFound
from moneykaki.models.merchant import Merchant, MerchantRedemption
from moneykaki.services.merchant_service import redeem_merchant

from factories import create_account


async def _merchant(session, points=30, quantity=2):
    m = Merchant(name="Kopi Corner", discount="20%", points=points, quantity=quantity, code="KOPI20")
    session.add(m)
    await session.flush()
    return m


@pytest.mark.asyncio
async def test_redeem_spends_points_and_stock(db_session):
    account = await create_account(db_session, "u", points=50)
    merchant = await _merchant(db_session)

    result = await redeem_merchant(db_session, account.id, merchant.id)

    assert result["code"] == "KOPI20"
    assert result["points_balance"] == 20
    assert result["remaining_quantity"] == 1
    redemptions = (await db_session.execute(select(MerchantRedemption))).scalars().all()
    assert [(r.account_id, r.points_spent) for r in redemptions] == [(account.id, 30)]


@pytest.mark.asyncio
async def test_redeem_without_enough_points_keeps_stock(db_session):
    account = await create_account(db_session, "u", points=10)
    merchant = await _merchant(db_session)

    with pytest.raises(InsufficientBalance):
        await redeem_merchant(db_session, account.id, merchant.id)

    quantity = (await db_session.execute(select(Merchant.quantity).where(Merchant.id == merchant.id))).scalar_one()
    assert quantity == 2


@pytest.mark.asyncio
async def test_redeem_sold_out(db_session):
    account = await create_account(db_session, "u", points=100)
    merchant = await _merchant(db_session, quantity=0)

    with pytest.raises(InsufficientInventory):
        await redeem_merchant(db_session, account.id, merchant.id)


@pytest.mark.asyncio
async def test_redeem_unknown_merchant(db_session):
    account = await create_account(db_session, "u", points=100)
    with pytest.raises(NotFound):
        await redeem_merchant(db_session, account.id, 42)
