from __future__ import annotations

import hashlib
import hmac
import time
from datetime import datetime
from decimal import Decimal

import httpx
from loguru import logger
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from moneykaki.core.settings import settings
from moneykaki.models.account import Account
from moneykaki.models.billing import PaymentOrder
from moneykaki.services.ledger_service import add_credits, get_account

STRIPE_API = "https://api.stripe.com/v1"
PRODUCT_NAME = "MoneyKaki Advisor TopUp"


class PaymentError(Exception):
    pass


async def create_checkout_session(
    db: AsyncSession,
    account: Account,
    amount: int,
    client: httpx.AsyncClient | None = None,
) -> PaymentOrder:
    """Create a pending order and a Stripe Checkout session for ``amount`` dollars."""
    if not settings.STRIPE_SECRET_KEY:
        raise PaymentError("stripe_not_configured")

    order = PaymentOrder(account_id=account.id, amount_cents=amount * 100, currency="usd", status="pending")
    db.add(order)
    await db.flush()

    form = {
        "mode": "payment",
        "payment_method_types[0]": "card",
        "line_items[0][quantity]": "1",
        "line_items[0][price_data][currency]": "usd",
        "line_items[0][price_data][unit_amount]": str(order.amount_cents),
        "line_items[0][price_data][product_data][name]": PRODUCT_NAME,
        "line_items[0][price_data][product_data][description]": "Top up your advisor account with credits",
        "success_url": settings.STRIPE_SUCCESS_URL,
        "cancel_url": settings.STRIPE_CANCEL_URL,
        "client_reference_id": str(order.id),
        "payment_intent_data[metadata][user_id]": str(account.id),
        "payment_intent_data[metadata][order_id]": str(order.id),
    }

    owns_client = client is None
    client = client or httpx.AsyncClient(timeout=15)
    try:
        resp = await client.post(
            f"{STRIPE_API}/checkout/sessions",
            data=form,
            headers={"Authorization": f"Bearer {settings.STRIPE_SECRET_KEY}"},
        )
    finally:
        if owns_client:
            await client.aclose()

    if resp.status_code != 200:
        logger.error(f"Stripe checkout session failed ({resp.status_code}): {resp.text}")
        raise PaymentError("checkout_create_failed")

    data = resp.json()
    order.checkout_session_id = data.get("id")
    order.checkout_url = data.get("url")
    await db.flush()
    logger.info(f"Checkout session {order.checkout_session_id} created for account {account.id}, {amount} USD")
    return order


def verify_signature(payload: bytes, header: str | None, secret: str, tolerance: int | None = None) -> bool:
    """Check a ``Stripe-Signature`` header (``t=<ts>,v1=<hex>[,v1=...]``)."""
    if not header or not secret:
        return False
    timestamp = None
    signatures = []
    for part in header.split(","):
        key, _, value = part.strip().partition("=")
        if key == "t":
            timestamp = value
        elif key == "v1":
            signatures.append(value)
    if not timestamp or not signatures:
        return False
    try:
        ts = int(timestamp)
    except ValueError:
        return False

    tolerance = settings.STRIPE_WEBHOOK_TOLERANCE_SECONDS if tolerance is None else tolerance
    if tolerance and abs(time.time() - ts) > tolerance:
        return False

    signed = f"{timestamp}.".encode() + payload
    expected = hmac.new(secret.encode(), signed, hashlib.sha256).hexdigest()
    return any(hmac.compare_digest(expected, s) for s in signatures)


async def apply_top_up(
    db: AsyncSession,
    account_id: int,
    amount_cents: int,
    payment_ref: str,
    order_id: int | None = None,
) -> tuple[bool, Decimal]:
    """Credit ``amount_cents / 100`` once per ``payment_ref``.

    Returns ``(credited, balance)``; ``credited`` is False for a duplicate.
    """
    existing = (await db.execute(
        select(PaymentOrder).where(PaymentOrder.external_id == payment_ref).with_for_update()
    )).scalar_one_or_none()
    if existing and existing.status == "paid":
        logger.info(f"Payment {payment_ref} already applied, ignoring redelivery")
        account = await get_account(db, account_id)
        return False, account.credits

    order = existing
    if order is None and order_id is not None:
        order = (await db.execute(
            select(PaymentOrder).where(PaymentOrder.id == order_id).with_for_update()
        )).scalar_one_or_none()
        if order and order.status == "paid":
            logger.info(f"Order {order_id} already paid, ignoring payment {payment_ref}")
            account = await get_account(db, account_id)
            return False, account.credits
    if order is None:
        order = PaymentOrder(account_id=account_id, amount_cents=amount_cents, currency="usd")
        db.add(order)

    order.status = "paid"
    order.external_id = payment_ref
    order.amount_cents = amount_cents
    order.paid_at = datetime.utcnow()
    await db.flush()

    amount = Decimal(amount_cents) / 100
    balance = await add_credits(db, account_id, amount, reason="top_up", ref_type="stripe", ref_id=payment_ref)
    logger.info(f"Top-up {payment_ref}: account {account_id} +{amount} credits -> {balance}")
    return True, balance


async def handle_event(db: AsyncSession, event: dict) -> dict:
    event_type = event.get("type")
    obj = (event.get("data") or {}).get("object") or {}

    if event_type == "payment_intent.succeeded":
        metadata = obj.get("metadata") or {}
        user_id = metadata.get("user_id")
        if not user_id or user_id == "unknown":
            logger.warning(f"Payment {obj.get('id')} has no user_id metadata")
            return {"status": "ignored"}
        order_id = metadata.get("order_id")
        credited, balance = await apply_top_up(
            db,
            int(user_id),
            int(obj.get("amount_received") or obj.get("amount") or 0),
            str(obj.get("id")),
            order_id=int(order_id) if order_id else None,
        )
        return {"status": "processed" if credited else "duplicate", "credits": balance}

    if event_type == "checkout.session.completed":
        return await _handle_session_completed(db, obj)

    if event_type == "payment_intent.payment_failed":
        logger.warning(f"Payment failed: {obj.get('id')}")
    else:
        logger.debug(f"Unhandled Stripe event type {event_type}")
    return {"status": "ignored"}


async def _handle_session_completed(db: AsyncSession, session: dict) -> dict:
    # the same payment may also arrive as payment_intent.succeeded; both are keyed by the intent id
    if session.get("payment_status") != "paid":
        logger.info(f"Checkout session {session.get('id')} completed unpaid")
        return {"status": "ignored"}

    order_id = session.get("client_reference_id")
    order = None
    if order_id and str(order_id).isdigit():
        order = (await db.execute(select(PaymentOrder).where(PaymentOrder.id == int(order_id)))).scalar_one_or_none()
    user_id = (session.get("metadata") or {}).get("user_id") or (order.account_id if order else None)
    if not user_id:
        logger.warning(f"Checkout session {session.get('id')} has no order or user_id")
        return {"status": "ignored"}

    credited, balance = await apply_top_up(
        db,
        int(user_id),
        int(session.get("amount_total") or (order.amount_cents if order else 0)),
        str(session.get("payment_intent") or session.get("id")),
        order_id=order.id if order else None,
    )
    return {"status": "processed" if credited else "duplicate", "credits": balance}
