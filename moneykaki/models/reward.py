from __future__ import annotations

from datetime import datetime
from decimal import Decimal

from sqlalchemy import String, Integer, Boolean, DateTime, ForeignKey, Numeric, JSON
from sqlalchemy.orm import Mapped, mapped_column

from moneykaki.db import Base


class Reward(Base):
    __tablename__ = "rewards"

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(String(128))
    picture: Mapped[str | None] = mapped_column(String(512), nullable=True)
    # credits per unit
    price: Mapped[Decimal] = mapped_column(Numeric(12, 2))
    # [{"code": "...", "is_redeemed": false}, ...]; older rows hold plain strings
    codes: Mapped[list] = mapped_column(JSON, default=list)
    version_id: Mapped[int] = mapped_column(Integer, nullable=False, default=1)

    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)
    updated_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)

    __mapper_args__ = {"version_id_col": version_id}


class RewardAssignment(Base):
    __tablename__ = "reward_assignments"

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    created_by: Mapped[int] = mapped_column(ForeignKey("accounts.id", ondelete="CASCADE"), index=True)
    assignee_id: Mapped[int] = mapped_column(ForeignKey("accounts.id", ondelete="CASCADE"), index=True)
    reward_id: Mapped[int] = mapped_column(ForeignKey("rewards.id", ondelete="CASCADE"), index=True)
    quantity: Mapped[int] = mapped_column(Integer, default=1)

    schedule_type: Mapped[str] = mapped_column(String(32), default="now")  # now/scheduled
    scheduled_for: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    wrapping_id: Mapped[int | None] = mapped_column(
        ForeignKey("wrappings.id", ondelete="SET NULL"), nullable=True
    )
    headline: Mapped[str | None] = mapped_column(String(255), nullable=True)
    greeting: Mapped[str | None] = mapped_column(String(1024), nullable=True)

    sent_to_advisor: Mapped[bool] = mapped_column(Boolean, default=False)
    is_approved: Mapped[bool] = mapped_column(Boolean, default=False)
    is_redeemed: Mapped[bool] = mapped_column(Boolean, default=False)
    # codes allocated at approval time
    reward_code: Mapped[list] = mapped_column(JSON, default=list)

    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)
    updated_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
