from __future__ import annotations

from loguru import logger
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select

from moneykaki.core.settings import settings
from moneykaki.models.account import Account, ROLE_ADMIN
from moneykaki.services.security import hash_password


async def ensure_default_admin(db: AsyncSession) -> None:
    admin = (await db.execute(select(Account).where(Account.role == ROLE_ADMIN).limit(1))).scalar_one_or_none()
    if admin:
        return
    db.add(Account(
        email=settings.DEFAULT_ADMIN_EMAIL,
        username=settings.DEFAULT_ADMIN_USERNAME,
        password_hash=hash_password(settings.DEFAULT_ADMIN_PASSWORD),
        role=ROLE_ADMIN,
    ))
    logger.info(f"Created default admin '{settings.DEFAULT_ADMIN_USERNAME}'")
