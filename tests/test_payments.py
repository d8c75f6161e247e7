"""
Tests for Stripe top-ups
"""
import hashlib
import hmac
import time
from decimal import Decimal
from urllib.parse import parse_qs

import httpx
import pytest
from sqlalchemy import select

from moneykaki.core.settings import settings
from moneykaki.models.account import ROLE_ADVISOR
from moneykaki.models.billing import PaymentOrder
from moneykaki.models.ledger import BalanceLedger
from moneykaki.services.payments import (
    PaymentError,
    apply_top_up,
    create_checkout_session,
    handle_event,
    verify_signature,
)

from factories import create_account

SECRET = "whsec_test"


def _sign(payload: bytes, ts: int | None = None, secret: str = SECRET) -> str:
    ts = ts or int(time.time())
    digest = hmac.new(secret.encode(), f"{ts}.".encode() + payload, hashlib.sha256).hexdigest()
    return f"t={ts},v1={digest}"


def _succeeded(intent_id: str, user_id: int, amount: int, order_id: int | None = None) -> dict:
    metadata = {"user_id": str(user_id)}
    if order_id:
        metadata["order_id"] = str(order_id)
    return {
        "type": "payment_intent.succeeded",
        "data": {"object": {"id": intent_id, "amount_received": amount, "metadata": metadata}},
    }


def test_signature_accepts_valid_header():
    body = b'{"type": "ping"}'
    assert verify_signature(body, _sign(body), SECRET) is True


def test_signature_rejects_tampering_and_staleness():
    body = b'{"type": "ping"}'
    assert verify_signature(body + b" ", _sign(body), SECRET) is False
    assert verify_signature(body, _sign(body, secret="other"), SECRET) is False
    assert verify_signature(body, _sign(body, ts=int(time.time()) - 3600), SECRET, tolerance=300) is False
    assert verify_signature(body, "garbage", SECRET) is False
    assert verify_signature(body, None, SECRET) is False


@pytest.mark.asyncio
async def test_top_up_is_applied_once(db_session):
    advisor = await create_account(db_session, "adv", role=ROLE_ADVISOR)
    event = _succeeded("pi_123", advisor.id, 2500)

    first = await handle_event(db_session, event)
    second = await handle_event(db_session, event)

    assert first["status"] == "processed"
    assert first["credits"] == Decimal("25")
    assert second["status"] == "duplicate"
    await db_session.refresh(advisor)
    assert advisor.credits == Decimal("25")
    ledger = (await db_session.execute(select(BalanceLedger))).scalars().all()
    assert [(l.reason, l.ref_id) for l in ledger] == [("top_up", "pi_123")]


@pytest.mark.asyncio
async def test_top_up_marks_pending_order_paid(db_session):
    advisor = await create_account(db_session, "adv", role=ROLE_ADVISOR)
    order = PaymentOrder(account_id=advisor.id, amount_cents=1000, currency="usd", status="pending")
    db_session.add(order)
    await db_session.flush()

    credited, balance = await apply_top_up(db_session, advisor.id, 1000, "pi_abc", order_id=order.id)
    assert credited is True
    assert balance == Decimal("10")

    await db_session.refresh(order)
    assert order.status == "paid"
    assert order.external_id == "pi_abc"

    # a different intent for an already paid order is not credited
    credited, _ = await apply_top_up(db_session, advisor.id, 1000, "pi_other", order_id=order.id)
    assert credited is False


@pytest.mark.asyncio
async def test_other_events_are_ignored(db_session):
    assert (await handle_event(db_session, {"type": "charge.refunded", "data": {"object": {}}}))["status"] == "ignored"
    no_user = {"type": "payment_intent.succeeded", "data": {"object": {"id": "pi_x", "metadata": {}}}}
    assert (await handle_event(db_session, no_user))["status"] == "ignored"


@pytest.mark.asyncio
async def test_checkout_session_is_created(db_session, monkeypatch):
    monkeypatch.setattr(settings, "STRIPE_SECRET_KEY", "sk_test")
    advisor = await create_account(db_session, "adv", role=ROLE_ADVISOR)
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["auth"] = request.headers["Authorization"]
        seen["form"] = parse_qs(request.content.decode())
        return httpx.Response(200, json={"id": "cs_test_1", "url": "https://checkout.stripe.com/c/cs_test_1"})

    async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
        order = await create_checkout_session(db_session, advisor, 50, client=client)

    assert order.amount_cents == 5000
    assert order.checkout_session_id == "cs_test_1"
    assert seen["auth"] == "Bearer sk_test"
    assert seen["form"]["line_items[0][price_data][unit_amount]"] == ["5000"]
    assert seen["form"]["payment_intent_data[metadata][user_id]"] == [str(advisor.id)]


@pytest.mark.asyncio
async def test_checkout_session_failure(db_session, monkeypatch):
    monkeypatch.setattr(settings, "STRIPE_SECRET_KEY", "sk_test")
    advisor = await create_account(db_session, "adv", role=ROLE_ADVISOR)
    transport = httpx.MockTransport(lambda request: httpx.Response(400, json={"error": {"message": "bad"}}))

    async with httpx.AsyncClient(transport=transport) as client:
        with pytest.raises(PaymentError):
            await create_checkout_session(db_session, advisor, 50, client=client)


@pytest.mark.asyncio
async def test_checkout_requires_configuration(db_session, monkeypatch):
    monkeypatch.setattr(settings, "STRIPE_SECRET_KEY", "")
    advisor = await create_account(db_session, "adv", role=ROLE_ADVISOR)
    with pytest.raises(PaymentError):
        await create_checkout_session(db_session, advisor, 50)


@pytest.mark.asyncio
async def test_session_and_intent_events_credit_once(db_session):
    advisor = await create_account(db_session, "adv", role=ROLE_ADVISOR)
    order = PaymentOrder(account_id=advisor.id, amount_cents=3000, currency="usd", status="pending")
    db_session.add(order)
    await db_session.flush()

    session_event = {
        "type": "checkout.session.completed",
        "data": {"object": {
            "id": "cs_1",
            "payment_status": "paid",
            "payment_intent": "pi_777",
            "client_reference_id": str(order.id),
            "amount_total": 3000,
        }},
    }
    assert (await handle_event(db_session, session_event))["status"] == "processed"
    intent_event = _succeeded("pi_777", advisor.id, 3000, order_id=order.id)
    assert (await handle_event(db_session, intent_event))["status"] == "duplicate"

    await db_session.refresh(advisor)
    assert advisor.credits == Decimal("30")
