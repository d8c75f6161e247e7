from __future__ import annotations

from decimal import Decimal

from loguru import logger
from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from moneykaki.core.errors import NotFound, InsufficientBalance
from moneykaki.models.account import Account
from moneykaki.models.ledger import BalanceLedger, CURRENCY_CREDITS, CURRENCY_POINTS


async def get_account(db: AsyncSession, account_id: int, for_update: bool = False) -> Account:
    stmt = select(Account).where(Account.id == account_id)
    if for_update:
        stmt = stmt.with_for_update()
    account = (await db.execute(stmt)).scalar_one_or_none()
    if not account:
        raise NotFound("account", account_id)
    return account


async def _balance(db: AsyncSession, account_id: int, column) -> Decimal | int:
    value = (await db.execute(select(column).where(Account.id == account_id))).scalar_one_or_none()
    if value is None:
        raise NotFound("account", account_id)
    return value


async def _apply(
    db: AsyncSession,
    account_id: int,
    currency: str,
    change: Decimal | int,
    reason: str,
    ref_type: str | None,
    ref_id: str | None,
    note: str | None,
):
    # the >= 0 guard is part of the WHERE clause
    column = Account.credits if currency == CURRENCY_CREDITS else Account.points
    stmt = update(Account).where(Account.id == account_id)
    if change < 0:
        stmt = stmt.where(column >= -change)
    stmt = stmt.values({column: column + change})

    result = await db.execute(stmt)
    if result.rowcount != 1:
        available = await _balance(db, account_id, column)
        raise InsufficientBalance(needed=-change, available=available, currency=currency)

    db.add(BalanceLedger(
        account_id=account_id,
        currency=currency,
        change=change,
        reason=reason,
        ref_type=ref_type,
        ref_id=ref_id,
        note=note,
    ))
    await db.flush()
    balance = await _balance(db, account_id, column)
    logger.debug(f"{currency} {change:+} for account {account_id} ({reason}) -> {balance}")
    return balance


async def add_points(
    db: AsyncSession,
    account_id: int,
    amount: int,
    reason: str,
    ref_type: str | None = None,
    ref_id: str | None = None,
    note: str | None = None,
) -> int:
    if amount <= 0:
        return await _balance(db, account_id, Account.points)
    return await _apply(db, account_id, CURRENCY_POINTS, int(amount), reason, ref_type, ref_id, note)


async def spend_points(
    db: AsyncSession,
    account_id: int,
    cost: int,
    reason: str,
    ref_type: str | None = None,
    ref_id: str | None = None,
    note: str | None = None,
) -> int:
    if cost <= 0:
        return await _balance(db, account_id, Account.points)
    return await _apply(db, account_id, CURRENCY_POINTS, -int(cost), reason, ref_type, ref_id, note)


async def add_credits(
    db: AsyncSession,
    account_id: int,
    amount: Decimal,
    reason: str,
    ref_type: str | None = None,
    ref_id: str | None = None,
    note: str | None = None,
) -> Decimal:
    amount = Decimal(amount)
    if amount <= 0:
        return await _balance(db, account_id, Account.credits)
    return await _apply(db, account_id, CURRENCY_CREDITS, amount, reason, ref_type, ref_id, note)


async def debit_credits(
    db: AsyncSession,
    account_id: int,
    cost: Decimal,
    reason: str,
    ref_type: str | None = None,
    ref_id: str | None = None,
    note: str | None = None,
) -> Decimal:
    cost = Decimal(cost)
    if cost <= 0:
        return await _balance(db, account_id, Account.credits)
    return await _apply(db, account_id, CURRENCY_CREDITS, -cost, reason, ref_type, ref_id, note)


async def adjust_balance(
    db: AsyncSession,
    account_id: int,
    currency: str,
    amount: Decimal | int,
    note: str | None = None,
):
    """Admin edit in either direction; still refuses to go below zero."""
    if currency not in (CURRENCY_CREDITS, CURRENCY_POINTS):
        raise ValueError("unknown_currency")
    if currency == CURRENCY_POINTS:
        amount = int(amount)
    else:
        amount = Decimal(amount)
    if amount == 0:
        column = Account.credits if currency == CURRENCY_CREDITS else Account.points
        return await _balance(db, account_id, column)
    return await _apply(db, account_id, currency, amount, "admin_adjust", "admin", "manual", note)
