from __future__ import annotations

from datetime import datetime
from decimal import Decimal

from sqlalchemy import ForeignKey, DateTime, String, Numeric
from sqlalchemy.orm import Mapped, mapped_column

from moneykaki.db import Base

CURRENCY_CREDITS = "credits"
CURRENCY_POINTS = "points"


class BalanceLedger(Base):
    __tablename__ = "balance_ledger"

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    account_id: Mapped[int] = mapped_column(ForeignKey("accounts.id", ondelete="CASCADE"), index=True)
    currency: Mapped[str] = mapped_column(String(16))  # credits/points
    change: Mapped[Decimal] = mapped_column(Numeric(12, 2))
    # signup_bonus/top_up/reward_approval/challenge_reward/daily_app_open/
    # streak_milestone/merchant_voucher/admin_adjust
    reason: Mapped[str] = mapped_column(String(32))
    ref_type: Mapped[str | None] = mapped_column(String(32), nullable=True)
    ref_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    note: Mapped[str | None] = mapped_column(String(255), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)
