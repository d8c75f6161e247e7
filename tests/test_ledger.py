"""
Tests for balance changes and their ledger rows
"""
from decimal import Decimal

import pytest
from sqlalchemy import select

from moneykaki.core.errors import InsufficientBalance, NotFound
from moneykaki.models.ledger import BalanceLedger
from moneykaki.services.ledger_service import (
    add_credits,
    add_points,
    adjust_balance,
    debit_credits,
    spend_points,
)

from factories import create_account


@pytest.mark.asyncio
async def test_credit_then_debit(db_session):
    account = await create_account(db_session, "adv", credits=0)

    assert await add_credits(db_session, account.id, Decimal("12.50"), reason="top_up") == Decimal("12.50")
    assert await debit_credits(db_session, account.id, Decimal("2.50"), reason="reward_approval") == Decimal("10")

    rows = (await db_session.execute(
        select(BalanceLedger).where(BalanceLedger.account_id == account.id).order_by(BalanceLedger.id)
    )).scalars().all()
    assert [(r.reason, r.change) for r in rows] == [
        ("top_up", Decimal("12.50")),
        ("reward_approval", Decimal("-2.50")),
    ]


@pytest.mark.asyncio
async def test_debit_never_goes_negative(db_session):
    account = await create_account(db_session, "adv", credits=5)

    with pytest.raises(InsufficientBalance) as exc:
        await debit_credits(db_session, account.id, Decimal("6"), reason="reward_approval")

    assert exc.value.details["currency"] == "credits"
    await db_session.refresh(account)
    assert account.credits == Decimal("5")
    rows = (await db_session.execute(select(BalanceLedger))).scalars().all()
    assert rows == []


@pytest.mark.asyncio
async def test_points_round_trip(db_session):
    account = await create_account(db_session, "u", points=3)

    assert await add_points(db_session, account.id, 7, reason="challenge_reward") == 10
    assert await spend_points(db_session, account.id, 10, reason="merchant_voucher") == 0
    with pytest.raises(InsufficientBalance):
        await spend_points(db_session, account.id, 1, reason="merchant_voucher")


@pytest.mark.asyncio
async def test_zero_amounts_are_no_ops(db_session):
    account = await create_account(db_session, "u", points=3)

    assert await add_points(db_session, account.id, 0, reason="noop") == 3
    rows = (await db_session.execute(select(BalanceLedger))).scalars().all()
    assert rows == []


@pytest.mark.asyncio
async def test_adjust_balance_both_directions(db_session):
    account = await create_account(db_session, "u", points=10)

    assert await adjust_balance(db_session, account.id, "points", -4, note="correction") == 6
    assert await adjust_balance(db_session, account.id, "credits", Decimal("3")) == Decimal("3")
    with pytest.raises(InsufficientBalance):
        await adjust_balance(db_session, account.id, "points", -7)
    with pytest.raises(ValueError):
        await adjust_balance(db_session, account.id, "coins", 1)


@pytest.mark.asyncio
async def test_unknown_account(db_session):
    with pytest.raises(NotFound):
        await add_points(db_session, 999, 5, reason="x")
