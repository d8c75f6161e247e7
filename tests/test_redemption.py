"""
Tests for advisor approval and user-side redemption
"""
from decimal import Decimal

import pytest
from sqlalchemy import select

from moneykaki.core.errors import (
    AlreadyProcessed,
    InsufficientBalance,
    InsufficientInventory,
    InvalidStateTransition,
    NoCodesAvailable,
    NotFound,
)
from moneykaki.models.account import ROLE_ADVISOR
from moneykaki.models.challenge import Challenge
from moneykaki.models.ledger import BalanceLedger
from moneykaki.services import code_pool
from moneykaki.services.redemption_service import (
    KIND_CHALLENGE,
    redeem_advisor_reward,
    redeem_challenge,
    redeem_user_reward,
)

from factories import create_account, create_assignment, create_reward

TWO_CODES = [{"code": "A", "is_redeemed": False}, {"code": "B", "is_redeemed": False}]


@pytest.mark.asyncio
async def test_advisor_short_on_credits_changes_nothing(db_session, user):
    """15 credits cannot pay for 2 x 10: no code flips, no debit"""
    advisor = await create_account(db_session, "poor_advisor", role=ROLE_ADVISOR, credits=15)
    reward = await create_reward(db_session, price=10, codes=list(TWO_CODES))
    assignment = await create_assignment(db_session, advisor, user, reward, quantity=2)

    with pytest.raises(InsufficientBalance) as exc:
        await redeem_advisor_reward(db_session, advisor.id, assignment.id)

    assert exc.value.details["needed"] == Decimal("20")
    assert exc.value.details["available"] == Decimal("15")

    await db_session.refresh(reward)
    await db_session.refresh(advisor)
    await db_session.refresh(assignment)
    assert reward.codes == TWO_CODES
    assert advisor.credits == Decimal("15")
    assert assignment.is_approved is False


@pytest.mark.asyncio
async def test_advisor_approval_allocates_and_debits(db_session, user):
    """25 credits pay for 2 x 10: both codes flip and 5 credits remain"""
    advisor = await create_account(db_session, "rich_advisor", role=ROLE_ADVISOR, credits=25)
    reward = await create_reward(db_session, price=10, codes=list(TWO_CODES))
    assignment = await create_assignment(db_session, advisor, user, reward, quantity=2)

    result = await redeem_advisor_reward(db_session, advisor.id, assignment.id)

    assert result.codes == ["A", "B"]
    assert result.debited == Decimal("20")
    assert result.remaining_balance == Decimal("5")

    await db_session.refresh(reward)
    await db_session.refresh(advisor)
    await db_session.refresh(assignment)
    assert all(c["is_redeemed"] for c in reward.codes)
    assert advisor.credits == Decimal("5")
    assert assignment.is_approved is True
    assert assignment.reward_code == ["A", "B"]

    ledger = (await db_session.execute(
        select(BalanceLedger).where(BalanceLedger.account_id == advisor.id)
    )).scalars().all()
    assert [(l.currency, l.change, l.reason) for l in ledger] == [("credits", Decimal("-20"), "reward_approval")]


@pytest.mark.asyncio
async def test_advisor_approval_normalizes_legacy_codes(db_session, advisor, user):
    reward = await create_reward(db_session, price=5, codes=["X", "Y", "Z"])
    assignment = await create_assignment(db_session, advisor, user, reward, quantity=1)

    result = await redeem_advisor_reward(db_session, advisor.id, assignment.id)

    assert result.codes == ["X"]
    await db_session.refresh(reward)
    assert reward.codes == [
        {"code": "X", "is_redeemed": True},
        {"code": "Y", "is_redeemed": False},
        {"code": "Z", "is_redeemed": False},
    ]


@pytest.mark.asyncio
async def test_advisor_approval_short_pool(db_session, advisor, user):
    reward = await create_reward(db_session, price=1, codes=["A", {"code": "B", "is_redeemed": True}])
    assignment = await create_assignment(db_session, advisor, user, reward, quantity=2)

    with pytest.raises(InsufficientInventory) as exc:
        await redeem_advisor_reward(db_session, advisor.id, assignment.id)

    assert exc.value.details["shortfall"] == 1
    await db_session.refresh(advisor)
    assert advisor.credits == Decimal("40")


@pytest.mark.asyncio
async def test_advisor_cannot_skip_user_request(db_session, advisor, user):
    """A new assignment must be sent to the advisor before approval"""
    reward = await create_reward(db_session)
    assignment = await create_assignment(db_session, advisor, user, reward, sent_to_advisor=False)

    with pytest.raises(InvalidStateTransition):
        await redeem_advisor_reward(db_session, advisor.id, assignment.id)


@pytest.mark.asyncio
async def test_advisor_approval_twice_is_already_processed(db_session, advisor, user):
    reward = await create_reward(db_session, price=5)
    assignment = await create_assignment(db_session, advisor, user, reward)

    await redeem_advisor_reward(db_session, advisor.id, assignment.id)
    with pytest.raises(AlreadyProcessed):
        await redeem_advisor_reward(db_session, advisor.id, assignment.id)

    await db_session.refresh(advisor)
    assert advisor.credits == Decimal("35")


@pytest.mark.asyncio
async def test_other_advisor_cannot_approve(db_session, advisor, user):
    other = await create_account(db_session, "other_advisor", role=ROLE_ADVISOR, credits=100)
    reward = await create_reward(db_session)
    assignment = await create_assignment(db_session, advisor, user, reward)

    with pytest.raises(NotFound):
        await redeem_advisor_reward(db_session, other.id, assignment.id)


@pytest.mark.asyncio
async def test_user_redeem_walks_the_workflow(db_session, advisor, user):
    reward = await create_reward(db_session, price=5)
    assignment = await create_assignment(db_session, advisor, user, reward, sent_to_advisor=False)

    first = await redeem_user_reward(db_session, user.id, assignment.id)
    assert first.status == "sent_to_advisor"
    assert first.reward["name"] == reward.name

    second = await redeem_user_reward(db_session, user.id, assignment.id)
    assert second.status == "pending_approval"

    await redeem_advisor_reward(db_session, advisor.id, assignment.id)

    third = await redeem_user_reward(db_session, user.id, assignment.id)
    assert third.status == "redeemed"
    assert third.codes == ["A"]


@pytest.mark.asyncio
async def test_user_redeem_after_redeemed_does_not_debit_again(db_session, advisor, user):
    reward = await create_reward(db_session, price=5)
    assignment = await create_assignment(db_session, advisor, user, reward)
    await redeem_advisor_reward(db_session, advisor.id, assignment.id)
    await redeem_user_reward(db_session, user.id, assignment.id)

    with pytest.raises(AlreadyProcessed):
        await redeem_user_reward(db_session, user.id, assignment.id)

    await db_session.refresh(advisor)
    await db_session.refresh(reward)
    assert advisor.credits == Decimal("35")
    assert code_pool.available_quantity(code_pool.parse_codes(reward.codes)) == 3


@pytest.mark.asyncio
async def test_user_redeem_approved_without_codes(db_session, advisor, user):
    reward = await create_reward(db_session)
    assignment = await create_assignment(db_session, advisor, user, reward)
    assignment.is_approved = True
    assignment.reward_code = []
    await db_session.flush()

    with pytest.raises(NoCodesAvailable):
        await redeem_user_reward(db_session, user.id, assignment.id)


@pytest.mark.asyncio
async def test_user_cannot_redeem_someone_elses_assignment(db_session, advisor, user):
    bob = await create_account(db_session, "bob")
    reward = await create_reward(db_session)
    assignment = await create_assignment(db_session, advisor, user, reward)

    with pytest.raises(NotFound):
        await redeem_user_reward(db_session, bob.id, assignment.id)


@pytest.mark.asyncio
async def test_points_only_challenge_awards_points_once(db_session, advisor, user):
    challenge = Challenge(user_id=user.id, created_by=advisor.id, challenge_title="No takeout week",
                          points=50, details={}, reward_code=[])
    db_session.add(challenge)
    await db_session.flush()

    result = await redeem_challenge(db_session, user.id, challenge.id)
    assert result.status == "redeemed"
    assert result.points_awarded == 50

    with pytest.raises(AlreadyProcessed):
        await redeem_challenge(db_session, user.id, challenge.id)

    await db_session.refresh(user)
    assert user.points == 50


@pytest.mark.asyncio
async def test_reward_challenge_uses_overall_price(db_session, advisor, user):
    reward = await create_reward(db_session, price=10)
    challenge = Challenge(user_id=user.id, created_by=advisor.id, challenge_title="Save 100",
                          points=20, reward_id=reward.id, quantity=2, overall_price=Decimal("12"),
                          details={}, reward_code=[])
    db_session.add(challenge)
    await db_session.flush()

    requested = await redeem_challenge(db_session, user.id, challenge.id)
    assert requested.status == "sent_to_advisor"
    assert requested.points_awarded == 0

    approved = await redeem_advisor_reward(db_session, advisor.id, challenge.id, kind=KIND_CHALLENGE)
    assert approved.debited == Decimal("12")
    assert approved.codes == ["A", "B"]

    redeemed = await redeem_challenge(db_session, user.id, challenge.id)
    assert redeemed.status == "redeemed"
    assert redeemed.codes == ["A", "B"]
    assert redeemed.points_awarded == 20

    await db_session.refresh(user)
    await db_session.refresh(advisor)
    assert user.points == 20
    assert advisor.credits == Decimal("28")
