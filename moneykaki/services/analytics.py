from __future__ import annotations

import calendar
from dataclasses import dataclass
from datetime import date, datetime, time, timedelta
from decimal import Decimal, ROUND_HALF_UP
from typing import Any

from sqlalchemy import select, func
from sqlalchemy.ext.asyncio import AsyncSession

from moneykaki.models.finance import Transaction, UserFinances, TYPE_EXPENSE, TYPE_INCOME

ZERO = Decimal("0")
CENT = Decimal("0.01")


@dataclass(frozen=True)
class DateRange:
    # both ends inclusive, None means unbounded
    start: date | None
    end: date | None

    def to_dict(self) -> dict[str, Any]:
        return {
            "start": self.start.isoformat() if self.start else None,
            "end": self.end.isoformat() if self.end else None,
        }


def _months_back(day: date, months: int) -> date:
    month_index = day.year * 12 + day.month - 1 - months
    year, month = divmod(month_index, 12)
    last = calendar.monthrange(year, month + 1)[1]
    return date(year, month + 1, min(day.day, last))


def date_range(period: str, start: date | None = None, end: date | None = None, today: date | None = None) -> DateRange:
    today = today or datetime.utcnow().date()
    if period == "custom":
        if not (start and end):
            raise ValueError("start_and_end_required")
        if start > end:
            raise ValueError("invalid_date_range")
        return DateRange(start, end)
    if period == "today":
        return DateRange(today, today)
    if period == "week":
        return DateRange(today - timedelta(days=7), today)
    if period == "month":
        return DateRange(_months_back(today, 1), today)
    if period == "quarter":
        return DateRange(_months_back(today, 3), today)
    if period == "year":
        return DateRange(_months_back(today, 12), today)
    if period == "all":
        return DateRange(None, None)
    raise ValueError("unknown_period")


def previous_range(current: DateRange) -> DateRange | None:
    """Window of the same length right before ``current``."""
    if current.start is None or current.end is None:
        return None
    length = (current.end - current.start).days + 1
    end = current.start - timedelta(days=1)
    return DateRange(end - timedelta(days=length - 1), end)


def _percent(part: Decimal, whole: Decimal) -> Decimal:
    if not whole:
        return ZERO
    return (Decimal(part) / Decimal(whole) * 100).quantize(CENT, rounding=ROUND_HALF_UP)


def _within(stmt, user_id: int, window: DateRange):
    stmt = stmt.where(Transaction.user_id == user_id)
    if window.start:
        stmt = stmt.where(Transaction.date >= datetime.combine(window.start, time.min))
    if window.end:
        stmt = stmt.where(Transaction.date < datetime.combine(window.end + timedelta(days=1), time.min))
    return stmt


async def category_totals(db: AsyncSession, user_id: int, window: DateRange, type_: str = TYPE_EXPENSE) -> list[dict]:
    total = func.sum(Transaction.amount)
    rows = (await db.execute(
        _within(
            select(Transaction.category, total, func.count(Transaction.id)),
            user_id, window,
        )
        .where(Transaction.type == type_)
        .group_by(Transaction.category)
        .order_by(total.desc())
    )).all()
    return [
        {"category": category or "Uncategorized", "total": Decimal(str(amount or 0)), "count": count}
        for category, amount, count in rows
    ]


async def daily_totals(db: AsyncSession, user_id: int, window: DateRange) -> list[tuple[str, str, Decimal, int]]:
    """(YYYY-MM-DD, type, total, count) per day and type, oldest first."""
    day = func.date(Transaction.date)
    rows = (await db.execute(
        _within(
            select(day, Transaction.type, func.sum(Transaction.amount), func.count(Transaction.id)),
            user_id, window,
        )
        .group_by(day, Transaction.type)
        .order_by(day)
    )).all()
    # sqlite hands back strings, postgres dates
    return [(str(d)[:10], t, Decimal(str(amount or 0)), count) for d, t, amount, count in rows]


def monthly_trend(daily: list[tuple[str, str, Decimal, int]]) -> list[dict]:
    months: dict[str, dict] = {}
    for day, type_, amount, _ in daily:
        bucket = months.setdefault(day[:7], {"month": day[:7], "income": ZERO, "expense": ZERO})
        bucket[type_] = bucket.get(type_, ZERO) + amount
    return [months[m] for m in sorted(months)]


def spending_heatmap(daily: list[tuple[str, str, Decimal, int]]) -> dict:
    days = [
        {"date": day, "amount": amount, "count": count}
        for day, type_, amount, count in daily
        if type_ == TYPE_EXPENSE
    ]
    total = sum((d["amount"] for d in days), ZERO)
    busiest = max(days, key=lambda d: d["amount"]) if days else None
    return {
        "days": days,
        "max_amount": busiest["amount"] if busiest else ZERO,
        "total_days": len(days),
        "average_daily": (total / len(days)).quantize(CENT, rounding=ROUND_HALF_UP) if days else ZERO,
        "most_active_day": busiest,
    }


def financial_kpis(
    daily: list[tuple[str, str, Decimal, int]],
    expense_categories: list[dict],
    monthly_budget: Decimal | None,
) -> dict:
    income = sum((a for _, t, a, _ in daily if t == TYPE_INCOME), ZERO)
    expense = sum((a for _, t, a, _ in daily if t == TYPE_EXPENSE), ZERO)
    count = sum(c for _, _, _, c in daily)
    net = income - expense
    top = expense_categories[0] if expense_categories else None
    budget = Decimal(monthly_budget or 0)
    return {
        "total_income": income,
        "total_expense": expense,
        "net_income": net,
        "savings_rate": _percent(net, income),
        "transaction_count": count,
        "avg_transaction_amount": ((income + expense) / count).quantize(CENT, rounding=ROUND_HALF_UP) if count else ZERO,
        "top_spending_category": {"category": top["category"], "amount": top["total"]} if top else None,
        "top_category_percent": _percent(top["total"], expense) if top else ZERO,
        "monthly_budget": budget,
        "budget_utilization": _percent(expense, budget),
    }


async def dashboard(
    db: AsyncSession,
    user_id: int,
    window: DateRange,
    type_: str = TYPE_EXPENSE,
    top: int = 5,
) -> dict:
    daily = await daily_totals(db, user_id, window)
    categories = await category_totals(db, user_id, window, type_)
    expense_categories = categories if type_ == TYPE_EXPENSE else await category_totals(db, user_id, window)
    budget = (await db.execute(
        select(UserFinances.monthly_expense).where(UserFinances.user_id == user_id)
    )).scalar_one_or_none()

    kpis = financial_kpis(daily, expense_categories, budget)
    expense_total = kpis["total_expense"]

    comparison = {"current": {"range": window.to_dict(), "categories": categories}}
    previous = previous_range(window)
    if previous:
        comparison["previous"] = {
            "range": previous.to_dict(),
            "categories": await category_totals(db, user_id, previous, type_),
        }

    return {
        "range": window.to_dict(),
        "type": type_,
        "categories": categories,
        "monthly_trend": monthly_trend(daily),
        "income_expense": {
            "income": kpis["total_income"],
            "expense": expense_total,
            "net": kpis["net_income"],
            "savings_rate": kpis["savings_rate"],
        },
        "top_categories": [
            {**c, "percent": _percent(c["total"], expense_total)} for c in expense_categories[:top]
        ],
        "daily_heatmap": spending_heatmap(daily),
        "kpis": kpis,
        "comparison": comparison,
        "insights": {
            "is_overspending": kpis["budget_utilization"] > 100,
            "is_saving": kpis["net_income"] > 0,
        },
    }
