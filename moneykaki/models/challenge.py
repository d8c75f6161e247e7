from __future__ import annotations

from datetime import datetime, date
from decimal import Decimal

from sqlalchemy import (
    String, Integer, Boolean, DateTime, Date, ForeignKey, Numeric, JSON, UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column

from moneykaki.db import Base

DAILY_APP_OPEN_TITLE = "Daily App Open Challenge"
DAILY_STREAK_TITLE = "Daily Streak Challenges"

DAILY_APP_OPEN_MILESTONE = "daily_app_open"


class Challenge(Base):
    __tablename__ = "challenges"

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    user_id: Mapped[int] = mapped_column(ForeignKey("accounts.id", ondelete="CASCADE"), index=True)
    created_by: Mapped[int | None] = mapped_column(
        ForeignKey("accounts.id", ondelete="SET NULL"), nullable=True, index=True
    )
    challenge_title: Mapped[str] = mapped_column(String(128), index=True)

    points: Mapped[int | None] = mapped_column(Integer, nullable=True)
    reward_id: Mapped[int | None] = mapped_column(ForeignKey("rewards.id", ondelete="SET NULL"), nullable=True)
    quantity: Mapped[int] = mapped_column(Integer, default=1)
    overall_price: Mapped[Decimal | None] = mapped_column(Numeric(12, 2), nullable=True)

    # streak state: {"current_streak": int, "last_expense_date": "YYYY-MM-DD" | None}
    details: Mapped[dict] = mapped_column(JSON, default=dict)

    sent_to_advisor: Mapped[bool] = mapped_column(Boolean, default=False)
    is_approved: Mapped[bool] = mapped_column(Boolean, default=False)
    is_redeemed: Mapped[bool] = mapped_column(Boolean, default=False)
    reward_code: Mapped[list] = mapped_column(JSON, default=list)

    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)


class ChallengeClaim(Base):
    __tablename__ = "challenge_claims"
    # the nightly job relies on this to never pay the same claim twice
    __table_args__ = (
        UniqueConstraint("challenge_id", "claim_date", "milestone", name="uq_challenge_claim"),
    )

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    challenge_id: Mapped[int] = mapped_column(ForeignKey("challenges.id", ondelete="CASCADE"), index=True)
    user_id: Mapped[int] = mapped_column(ForeignKey("accounts.id", ondelete="CASCADE"), index=True)
    claim_date: Mapped[date] = mapped_column(Date)
    points_awarded: Mapped[int] = mapped_column(Integer)
    # "daily_app_open" or "<n>-day streak"
    milestone: Mapped[str] = mapped_column(String(32))
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)
