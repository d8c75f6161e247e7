from __future__ import annotations

from datetime import date
from typing import Literal

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.ext.asyncio import AsyncSession

from moneykaki.db import get_db
from moneykaki.deps import get_current_account
from moneykaki.models.account import Account
from moneykaki.services import analytics
from moneykaki.services.analytics import DateRange

router = APIRouter(prefix="/api/v1/analytics", tags=["analytics"])

Period = Literal["today", "week", "month", "quarter", "year", "all", "custom"]


def _window(period: str, start: date | None, end: date | None) -> DateRange:
    try:
        return analytics.date_range(period, start, end)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))


@router.get("/dashboard")
async def dashboard(
    period: Period = "all",
    start: date | None = None,
    end: date | None = None,
    type: Literal["income", "expense"] = "expense",
    top: int = Query(default=5, ge=1, le=20),
    account: Account = Depends(get_current_account),
    db: AsyncSession = Depends(get_db),
):
    window = _window(period, start, end)
    return {"period": period, **await analytics.dashboard(db, account.id, window, type, top)}


@router.get("/categories")
async def categories(
    period: Period = "month",
    start: date | None = None,
    end: date | None = None,
    type: Literal["income", "expense"] = "expense",
    account: Account = Depends(get_current_account),
    db: AsyncSession = Depends(get_db),
):
    window = _window(period, start, end)
    rows = await analytics.category_totals(db, account.id, window, type)
    return {"range": window.to_dict(), "type": type, "categories": rows}


@router.get("/trend")
async def monthly_trend(
    period: Period = "year",
    start: date | None = None,
    end: date | None = None,
    account: Account = Depends(get_current_account),
    db: AsyncSession = Depends(get_db),
):
    window = _window(period, start, end)
    daily = await analytics.daily_totals(db, account.id, window)
    return {"range": window.to_dict(), "months": analytics.monthly_trend(daily)}


@router.get("/heatmap")
async def heatmap(
    period: Period = "month",
    start: date | None = None,
    end: date | None = None,
    account: Account = Depends(get_current_account),
    db: AsyncSession = Depends(get_db),
):
    window = _window(period, start, end)
    daily = await analytics.daily_totals(db, account.id, window)
    return {"range": window.to_dict(), **analytics.spending_heatmap(daily)}
