"""
Two sessions on separate connections racing for the same codes and credits
"""
from decimal import Decimal

import pytest
from sqlalchemy import func, select

from moneykaki.core.errors import InsufficientBalance, InsufficientInventory, StoreError
from moneykaki.models.account import Account, ROLE_ADVISOR
from moneykaki.models.ledger import BalanceLedger
from moneykaki.models.reward import Reward, RewardAssignment
from moneykaki.services import code_pool
from moneykaki.services.ledger_service import debit_credits, get_account
from moneykaki.services.redemption_service import redeem_advisor_reward

from factories import create_account, create_assignment, create_reward


async def _one_code_two_grants(session_factory):
    async with session_factory() as session:
        advisor = await create_account(session, "adv", role=ROLE_ADVISOR, credits=100)
        user = await create_account(session, "alice", advisor_id=advisor.id)
        reward = await create_reward(session, price=10, codes=["ONLY"])
        first = await create_assignment(session, advisor, user, reward)
        second = await create_assignment(session, advisor, user, reward)
        await session.commit()
        return advisor.id, reward.id, first.id, second.id


async def _assert_single_sale(session_factory, advisor_id, reward_id, first_id, second_id):
    async with session_factory() as session:
        reward = await session.get(Reward, reward_id)
        assert code_pool.parse_codes(reward.codes) == [code_pool.RewardCode("ONLY", True)]

        first = await session.get(RewardAssignment, first_id)
        second = await session.get(RewardAssignment, second_id)
        assert first.reward_code == ["ONLY"]
        assert second.is_approved is False
        assert second.reward_code == []

        advisor = await session.get(Account, advisor_id)
        assert advisor.credits == Decimal("90")
        debits = await session.scalar(
            select(func.count(BalanceLedger.id)).where(BalanceLedger.account_id == advisor_id)
        )
        assert debits == 1


@pytest.mark.asyncio
async def test_second_approval_sees_the_pool_emptied(file_session_factory):
    """B peeks at the pool, A takes the only code, B finds nothing left"""
    advisor_id, reward_id, first_id, second_id = await _one_code_two_grants(file_session_factory)

    async with file_session_factory() as session_a, file_session_factory() as session_b:
        codes = await session_b.scalar(select(Reward.codes).where(Reward.id == reward_id))
        assert code_pool.available_quantity(code_pool.parse_codes(codes)) == 1

        result = await redeem_advisor_reward(session_a, advisor_id, first_id)
        await session_a.commit()
        assert result.codes == ["ONLY"]

        with pytest.raises(InsufficientInventory):
            await redeem_advisor_reward(session_b, advisor_id, second_id)
        await session_b.rollback()

    await _assert_single_sale(file_session_factory, advisor_id, reward_id, first_id, second_id)


@pytest.mark.asyncio
async def test_stale_reward_row_is_rejected_by_version_check(file_session_factory):
    """B holds the reward loaded before A's commit; the version counter refuses B's write"""
    advisor_id, reward_id, first_id, second_id = await _one_code_two_grants(file_session_factory)

    async with file_session_factory() as session_a, file_session_factory() as session_b:
        stale = await session_b.get(Reward, reward_id)
        assert stale.version_id == 1

        await redeem_advisor_reward(session_a, advisor_id, first_id)
        await session_a.commit()

        with pytest.raises(StoreError):
            await redeem_advisor_reward(session_b, advisor_id, second_id)
        await session_b.rollback()

    await _assert_single_sale(file_session_factory, advisor_id, reward_id, first_id, second_id)


@pytest.mark.asyncio
async def test_stale_balance_read_cannot_overdraw(file_session_factory):
    """Both sessions saw 15 credits; only one 10-credit debit can land"""
    async with file_session_factory() as session:
        advisor = await create_account(session, "adv", role=ROLE_ADVISOR, credits=15)
        await session.commit()

    async with file_session_factory() as session_a, file_session_factory() as session_b:
        seen_by_b = await get_account(session_b, advisor.id)
        assert seen_by_b.credits == Decimal("15")

        remaining = await debit_credits(session_a, advisor.id, Decimal("10"), reason="reward_approval")
        await session_a.commit()
        assert remaining == Decimal("5")

        with pytest.raises(InsufficientBalance) as exc:
            await debit_credits(session_b, advisor.id, Decimal("10"), reason="reward_approval")
        assert exc.value.details["available"] == Decimal("5")
        await session_b.rollback()

    async with file_session_factory() as session:
        fresh = await session.get(Account, advisor.id)
        assert fresh.credits == Decimal("5")
        rows = await session.scalar(
            select(func.count(BalanceLedger.id)).where(BalanceLedger.account_id == advisor.id)
        )
        assert rows == 1
