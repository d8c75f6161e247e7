from __future__ import annotations

from datetime import datetime
from decimal import Decimal

from sqlalchemy import String, DateTime, Integer, Numeric, ForeignKey, CheckConstraint
from sqlalchemy.orm import Mapped, mapped_column

from moneykaki.db import Base

ROLE_USER = "user"
ROLE_ADVISOR = "advisor"
ROLE_ADMIN = "admin"
ROLES = (ROLE_USER, ROLE_ADVISOR, ROLE_ADMIN)

STATUS_ACTIVE = "active"
STATUS_INACTIVE = "inactive"


class Account(Base):
    __tablename__ = "accounts"
    __table_args__ = (
        CheckConstraint("credits >= 0", name="ck_accounts_credits_non_negative"),
        CheckConstraint("points >= 0", name="ck_accounts_points_non_negative"),
    )

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    email: Mapped[str] = mapped_column(String(320), unique=True, index=True)
    username: Mapped[str] = mapped_column(String(64), unique=True, index=True)
    password_hash: Mapped[str] = mapped_column(String(255))
    full_name: Mapped[str | None] = mapped_column(String(128), nullable=True)
    phone: Mapped[str | None] = mapped_column(String(32), nullable=True)

    role: Mapped[str] = mapped_column(String(16), default=ROLE_USER, index=True)  # user/advisor/admin
    status: Mapped[str] = mapped_column(String(16), default=STATUS_ACTIVE)  # active/inactive

    # advisor-held spendable balance
    credits: Mapped[Decimal] = mapped_column(Numeric(12, 2), default=Decimal("0"))
    # user-held gamification balance
    points: Mapped[int] = mapped_column(Integer, default=0)

    advisor_id: Mapped[int | None] = mapped_column(
        ForeignKey("accounts.id", ondelete="SET NULL"), nullable=True, index=True
    )

    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)
    last_login_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)

    @property
    def is_active(self) -> bool:
        return self.status == STATUS_ACTIVE
