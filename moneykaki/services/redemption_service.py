# Codes are allocated, paid for and flagged in the caller's session; get_db commits.
from __future__ import annotations

from dataclasses import dataclass, field, asdict
from datetime import datetime
from decimal import Decimal
from typing import Any

from loguru import logger
from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm.exc import StaleDataError

from moneykaki.core.errors import (
    NotFound, NoCodesAvailable, StoreError, MoneyKakiError, InsufficientBalance,
)
from moneykaki.models.challenge import Challenge
from moneykaki.models.reward import Reward, RewardAssignment
from moneykaki.services import approval, code_pool, ledger_service
from moneykaki.services.approval import ApprovalState

KIND_ASSIGNMENT = "assignment"
KIND_CHALLENGE = "challenge"


@dataclass
class AdvisorRedemption:
    codes: list[str]
    debited: Decimal
    remaining_balance: Decimal

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass
class UserRedemption:
    status: str
    codes: list[str] = field(default_factory=list)
    points_awarded: int = 0
    reward: dict[str, Any] | None = None

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


async def _load_target(db: AsyncSession, kind: str, target_id: int) -> RewardAssignment | Challenge:
    if kind == KIND_ASSIGNMENT:
        model = RewardAssignment
    elif kind == KIND_CHALLENGE:
        model = Challenge
    else:
        raise ValueError(f"unknown redemption target kind: {kind}")
    target = (await db.execute(select(model).where(model.id == target_id).with_for_update())).scalar_one_or_none()
    if not target:
        raise NotFound(kind, target_id)
    return target


async def load_reward(db: AsyncSession, reward_id: int | None, for_update: bool = False) -> Reward:
    if reward_id is None:
        raise NotFound("reward", reward_id)
    stmt = select(Reward).where(Reward.id == reward_id)
    if for_update:
        stmt = stmt.with_for_update()
    reward = (await db.execute(stmt)).scalar_one_or_none()
    if not reward:
        raise NotFound("reward", reward_id)
    return reward


def _cost(target: RewardAssignment | Challenge, reward: Reward, quantity: int) -> Decimal:
    if isinstance(target, Challenge) and target.overall_price is not None:
        return Decimal(target.overall_price)
    return Decimal(reward.price) * quantity


def reward_summary(reward: Reward) -> dict[str, Any]:
    return {"id": reward.id, "name": reward.name, "picture": reward.picture, "price": reward.price}


async def redeem_advisor_reward(
    db: AsyncSession,
    actor_id: int,
    target_id: int,
    kind: str = KIND_ASSIGNMENT,
) -> AdvisorRedemption:
    """Approve an assignment/challenge: allocate codes and debit the advisor."""
    target = await _load_target(db, kind, target_id)
    if target.created_by != actor_id:
        # do not reveal other advisors' grants
        raise NotFound(kind, target_id)

    approval.check_transition(target, ApprovalState.APPROVED)

    reward = await load_reward(db, target.reward_id, for_update=True)
    pool = code_pool.parse_codes(reward.codes)
    quantity = int(target.quantity or 1)

    # raises InsufficientInventory before anything is written
    updated_pool, allocated = code_pool.allocate(pool, quantity)

    cost = _cost(target, reward, quantity)
    advisor = await ledger_service.get_account(db, actor_id)
    if advisor.credits < cost:
        raise InsufficientBalance(needed=cost, available=advisor.credits)

    try:
        reward.codes = code_pool.dump_codes(updated_pool)
        reward.updated_at = datetime.utcnow()
        await db.flush()

        remaining = await ledger_service.debit_credits(
            db, actor_id, cost,
            reason="reward_approval", ref_type=kind, ref_id=str(target.id),
            note=f"{quantity} x {reward.name}",
        )

        approval.transition(target, ApprovalState.APPROVED)
        target.reward_code = allocated
        if isinstance(target, RewardAssignment):
            target.updated_at = datetime.utcnow()
        await db.flush()
    except MoneyKakiError:
        raise
    except StaleDataError as e:
        logger.exception(f"Concurrent update on reward {reward.id} while approving {kind} {target_id}")
        raise StoreError("reward pool changed concurrently", reward_id=reward.id) from e
    except SQLAlchemyError as e:
        logger.exception(f"Store failure approving {kind} {target_id} for advisor {actor_id}")
        raise StoreError(str(e)) from e

    logger.info(
        f"Advisor {actor_id} approved {kind} {target_id}: {len(allocated)} code(s) of reward {reward.id}, "
        f"debited {cost}, remaining {remaining}"
    )
    return AdvisorRedemption(codes=allocated, debited=cost, remaining_balance=remaining)


def _advance_user_side(target: RewardAssignment | Challenge) -> UserRedemption:
    state = approval.state_of(target)
    if state is ApprovalState.REDEEMED:
        approval.check_transition(target, ApprovalState.REDEEMED)

    if state is ApprovalState.APPROVED:
        codes = list(target.reward_code or [])
        if not codes:
            raise NoCodesAvailable("no codes were allocated for this reward")
        approval.transition(target, ApprovalState.REDEEMED)
        return UserRedemption(status=ApprovalState.REDEEMED.value, codes=codes)

    if state is ApprovalState.SENT_TO_ADVISOR:
        return UserRedemption(status="pending_approval")

    approval.transition(target, ApprovalState.SENT_TO_ADVISOR)
    return UserRedemption(status=ApprovalState.SENT_TO_ADVISOR.value)


async def redeem_user_reward(db: AsyncSession, user_id: int, assignment_id: int) -> UserRedemption:
    assignment = (await db.execute(
        select(RewardAssignment)
        .where(RewardAssignment.id == assignment_id, RewardAssignment.assignee_id == user_id)
        .with_for_update()
    )).scalar_one_or_none()
    if not assignment:
        raise NotFound("assignment", assignment_id)

    result = _advance_user_side(assignment)
    if result.status != "pending_approval":
        assignment.updated_at = datetime.utcnow()
        await db.flush()

    reward = (await db.execute(select(Reward).where(Reward.id == assignment.reward_id))).scalar_one_or_none()
    if reward:
        result.reward = reward_summary(reward)
    logger.info(f"User {user_id} redeem on assignment {assignment_id}: {result.status}")
    return result


async def redeem_challenge(db: AsyncSession, user_id: int, challenge_id: int) -> UserRedemption:
    challenge = (await db.execute(
        select(Challenge)
        .where(Challenge.id == challenge_id, Challenge.user_id == user_id)
        .with_for_update()
    )).scalar_one_or_none()
    if not challenge:
        raise NotFound("challenge", challenge_id)

    if challenge.reward_id is None:
        # points-only challenge: no advisor involved
        if challenge.is_redeemed:
            approval.check_transition(challenge, ApprovalState.REDEEMED)
        challenge.is_redeemed = True
        result = UserRedemption(status=ApprovalState.REDEEMED.value)
    else:
        result = _advance_user_side(challenge)
        reward = (await db.execute(select(Reward).where(Reward.id == challenge.reward_id))).scalar_one_or_none()
        if reward:
            result.reward = reward_summary(reward)

    if result.status == ApprovalState.REDEEMED.value and challenge.points:
        await ledger_service.add_points(
            db, user_id, challenge.points,
            reason="challenge_reward", ref_type="challenge", ref_id=str(challenge.id),
        )
        result.points_awarded = challenge.points

    await db.flush()
    logger.info(f"User {user_id} redeem on challenge {challenge_id}: {result.status} (+{result.points_awarded} points)")
    return result
