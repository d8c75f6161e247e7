from __future__ import annotations

from typing import AsyncIterator

from loguru import logger
from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine
from sqlalchemy.orm import sessionmaker, DeclarativeBase

from moneykaki.core.settings import settings

IS_SQLITE = settings.DATABASE_URL.startswith("sqlite")


class Base(DeclarativeBase):
    pass


engine = create_async_engine(
    settings.DATABASE_URL,
    echo=False,
    future=True,
    pool_pre_ping=not IS_SQLITE,
)

AsyncSessionLocal = sessionmaker(
    engine, class_=AsyncSession, expire_on_commit=False
)


async def get_db() -> AsyncIterator[AsyncSession]:
    async with AsyncSessionLocal() as session:
        try:
            yield session
            # one request == one transaction
            await session.commit()
        except Exception:
            await session.rollback()
            raise


async def init_db() -> None:
    """Create tables on startup and seed the default admin."""
    from moneykaki.models import all_models  # noqa: F401
    from moneykaki.services.admin_bootstrap import ensure_default_admin

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
        if IS_SQLITE:
            await conn.execute(text("PRAGMA journal_mode=WAL;"))
            await conn.execute(text("PRAGMA synchronous=NORMAL;"))

    async with AsyncSessionLocal() as session:
        await ensure_default_admin(session)
        await session.commit()
    logger.info(f"Database ready ({engine.url.render_as_string(hide_password=True)})")


async def close_db() -> None:
    await engine.dispose()
