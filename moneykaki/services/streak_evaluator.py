"""Nightly Daily App Open and Daily Streak payouts."""
from __future__ import annotations

import asyncio
from dataclasses import dataclass, asdict
from datetime import date, datetime, time, timedelta
from typing import Any, Callable

from loguru import logger
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from moneykaki.db import AsyncSessionLocal
from moneykaki.models.challenge import (
    Challenge,
    ChallengeClaim,
    DAILY_APP_OPEN_TITLE,
    DAILY_STREAK_TITLE,
    DAILY_APP_OPEN_MILESTONE,
)
from moneykaki.models.finance import Transaction, TYPE_EXPENSE
from moneykaki.services.ledger_service import add_points

DAILY_APP_OPEN_POINTS = 5

# streak length in days -> bonus points
STREAK_MILESTONES = {3: 10, 7: 15, 14: 20, 21: 25, 30: 30}

# runs before this hour judge the previous day
EVALUATION_CUTOFF_HOUR = 12

_run_lock = asyncio.Lock()


@dataclass
class EvaluatorSummary:
    run_date: str
    processed: int = 0
    awarded_points: int = 0
    skipped: int = 0
    failed: int = 0
    already_running: bool = False

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


def next_streak(current: int, last_expense_date: date | None, today: date) -> int:
    if last_expense_date is None or last_expense_date == today - timedelta(days=1):
        return current + 1
    if last_expense_date == today:
        return current
    return 1


def evaluation_day(now: datetime | None = None) -> date:
    """The day a run at ``now`` should judge: the day that just ended when fired after midnight."""
    now = now or datetime.utcnow()
    if now.hour < EVALUATION_CUTOFF_HOUR:
        return now.date() - timedelta(days=1)
    return now.date()


def milestone_reached(current: int, new: int) -> tuple[int, int] | None:
    """(threshold, points) if ``new`` just crossed a milestone, else None."""
    for threshold, points in STREAK_MILESTONES.items():
        if new == threshold and current < threshold:
            return threshold, points
    return None


async def _claim_exists(session: AsyncSession, challenge_id: int, today: date, milestone: str) -> bool:
    row = (await session.execute(
        select(ChallengeClaim.id).where(
            ChallengeClaim.challenge_id == challenge_id,
            ChallengeClaim.claim_date == today,
            ChallengeClaim.milestone == milestone,
        )
    )).scalar_one_or_none()
    return row is not None


async def _claim(session: AsyncSession, challenge: Challenge, today: date, points: int, milestone: str, reason: str) -> int:
    # the insert goes first: a duplicate fails on the unique key before any points move
    session.add(ChallengeClaim(
        challenge_id=challenge.id,
        user_id=challenge.user_id,
        claim_date=today,
        points_awarded=points,
        milestone=milestone,
    ))
    await session.flush()
    await add_points(
        session, challenge.user_id, points,
        reason=reason, ref_type="challenge", ref_id=str(challenge.id), note=milestone,
    )
    return points


async def process_daily_app_open(session: AsyncSession, challenge_id: int, today: date) -> int:
    challenge = await session.get(Challenge, challenge_id)
    if not challenge or challenge.is_redeemed:
        return 0
    if await _claim_exists(session, challenge.id, today, DAILY_APP_OPEN_MILESTONE):
        logger.debug(f"User {challenge.user_id} already claimed Daily App Open points for {today}")
        return 0
    awarded = await _claim(session, challenge, today, DAILY_APP_OPEN_POINTS, DAILY_APP_OPEN_MILESTONE, "daily_app_open")
    logger.info(f"Awarded {awarded} points to user {challenge.user_id} for Daily App Open")
    return awarded


async def has_expense_on(session: AsyncSession, user_id: int, day: date) -> bool:
    start = datetime.combine(day, time.min)
    end = start + timedelta(days=1)
    row = (await session.execute(
        select(Transaction.id).where(
            Transaction.user_id == user_id,
            Transaction.type == TYPE_EXPENSE,
            Transaction.date >= start,
            Transaction.date < end,
        ).limit(1)
    )).scalar_one_or_none()
    return row is not None


async def process_daily_streak(session: AsyncSession, challenge_id: int, today: date) -> int:
    challenge = await session.get(Challenge, challenge_id)
    if not challenge or challenge.is_redeemed:
        return 0
    details = dict(challenge.details or {})

    if not await has_expense_on(session, challenge.user_id, today):
        details["current_streak"] = 0
        details["last_expense_date"] = None
        challenge.details = details
        await session.flush()
        logger.info(f"User {challenge.user_id} logged no expense on {today}, streak reset")
        return 0

    current = int(details.get("current_streak") or 0)
    last_raw = details.get("last_expense_date")
    last = date.fromisoformat(last_raw) if last_raw else None
    new = next_streak(current, last, today)

    awarded = 0
    hit = milestone_reached(current, new)
    if hit:
        threshold, points = hit
        label = f"{threshold}-day streak"
        if await _claim_exists(session, challenge.id, today, label):
            logger.debug(f"Milestone {label} already paid to user {challenge.user_id} on {today}")
        else:
            awarded = await _claim(session, challenge, today, points, label, "streak_milestone")
            logger.info(f"Awarded {awarded} points to user {challenge.user_id} for {label}")

    details["current_streak"] = new
    details["last_expense_date"] = today.isoformat()
    challenge.details = details
    await session.flush()
    logger.debug(f"Streak for user {challenge.user_id} is now {new} day(s)")
    return awarded


async def _challenge_ids(session_factory: Callable[[], AsyncSession], title: str) -> list[int]:
    async with session_factory() as session:
        rows = await session.execute(
            select(Challenge.id)
            .where(Challenge.challenge_title == title, Challenge.is_redeemed == False)  # noqa: E712
            .order_by(Challenge.id)
        )
        return list(rows.scalars().all())


async def _run_each(
    session_factory: Callable[[], AsyncSession],
    title: str,
    processor,
    today: date,
    summary: EvaluatorSummary,
) -> None:
    ids = await _challenge_ids(session_factory, title)
    if not ids:
        logger.info(f"No open '{title}' challenges")
        return
    for challenge_id in ids:
        async with session_factory() as session:
            try:
                awarded = await processor(session, challenge_id, today)
                await session.commit()
                summary.awarded_points += awarded
                summary.processed += 1
            except IntegrityError:
                # another run inserted the same claim first
                await session.rollback()
                summary.skipped += 1
                logger.warning(f"Duplicate claim for challenge {challenge_id} on {today}, skipped")
            except Exception:
                await session.rollback()
                summary.failed += 1
                logger.exception(f"Error processing '{title}' challenge {challenge_id}")


async def run_nightly_evaluator(
    session_factory: Callable[[], AsyncSession] = AsyncSessionLocal,
    today: date | None = None,
) -> EvaluatorSummary:
    today = today or evaluation_day()
    summary = EvaluatorSummary(run_date=today.isoformat())

    if _run_lock.locked():
        logger.warning("Nightly challenge evaluator is already running, skipping this trigger")
        summary.already_running = True
        return summary

    async with _run_lock:
        logger.info(f"Nightly challenge evaluator started for {today}")
        await _run_each(session_factory, DAILY_APP_OPEN_TITLE, process_daily_app_open, today, summary)
        await _run_each(session_factory, DAILY_STREAK_TITLE, process_daily_streak, today, summary)
        logger.info(
            f"Nightly challenge evaluator finished: processed={summary.processed} "
            f"points={summary.awarded_points} skipped={summary.skipped} failed={summary.failed}"
        )
    return summary
