import json

from fastapi import APIRouter, Depends, HTTPException, Request, Header
from loguru import logger
from pydantic import BaseModel, Field
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from moneykaki.core.settings import settings
from moneykaki.db import get_db
from moneykaki.deps import get_current_advisor
from moneykaki.models.account import Account
from moneykaki.models.billing import PaymentOrder
from moneykaki.services.payments import PaymentError, create_checkout_session, verify_signature, handle_event

router = APIRouter(prefix="/api/v1/billing", tags=["billing"])


class CreateCheckoutIn(BaseModel):
    # whole dollars
    amount: int = Field(ge=1, le=10000)


@router.post("/checkout")
async def create_checkout(
    payload: CreateCheckoutIn,
    advisor: Account = Depends(get_current_advisor),
    db: AsyncSession = Depends(get_db),
):
    try:
        order = await create_checkout_session(db, advisor, payload.amount)
    except PaymentError as e:
        raise HTTPException(status_code=502 if str(e) == "checkout_create_failed" else 500, detail=str(e))
    return {"order_id": order.id, "session_id": order.checkout_session_id, "checkout_url": order.checkout_url}


@router.get("/orders")
async def my_orders(advisor: Account = Depends(get_current_advisor), db: AsyncSession = Depends(get_db)):
    rows = (await db.execute(
        select(PaymentOrder).where(PaymentOrder.account_id == advisor.id).order_by(PaymentOrder.id.desc())
    )).scalars().all()
    return [
        {
            "id": o.id,
            "amount_cents": o.amount_cents,
            "currency": o.currency,
            "status": o.status,
            "created_at": o.created_at.isoformat() if o.created_at else None,
            "paid_at": o.paid_at.isoformat() if o.paid_at else None,
        }
        for o in rows
    ]


@router.post("/webhook")
async def stripe_webhook(
    request: Request,
    stripe_signature: str = Header(None),
    db: AsyncSession = Depends(get_db),
):
    if not stripe_signature:
        raise HTTPException(status_code=400, detail="missing_signature")
    raw_body = await request.body()
    if not verify_signature(raw_body, stripe_signature, settings.STRIPE_WEBHOOK_SECRET):
        logger.warning("Rejected Stripe webhook with a bad signature")
        raise HTTPException(status_code=400, detail="invalid_signature")

    try:
        event = json.loads(raw_body)
    except json.JSONDecodeError:
        raise HTTPException(status_code=400, detail="invalid_payload")

    return await handle_event(db, event)
