from fastapi import FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from loguru import logger

from moneykaki.core.errors import MoneyKakiError
from moneykaki.core.logging import setup_logging
from moneykaki.core.settings import settings
from moneykaki.db import init_db, close_db
from moneykaki.routers.health import router as health_router
from moneykaki.routers.auth import router as auth_router
from moneykaki.routers.admin import router as admin_router
from moneykaki.routers.rewards import router as rewards_router
from moneykaki.routers.assignments import router as assignments_router
from moneykaki.routers.challenges import router as challenges_router
from moneykaki.routers.merchants import router as merchants_router
from moneykaki.routers.transactions import router as transactions_router
from moneykaki.routers.goals import router as goals_router
from moneykaki.routers.finances import router as finances_router
from moneykaki.routers.analytics import router as analytics_router
from moneykaki.routers.wrappings import router as wrappings_router
from moneykaki.routers.billing import router as billing_router
from moneykaki.services.scheduler import challenge_scheduler


async def _moneykaki_error(request: Request, exc: MoneyKakiError) -> JSONResponse:
    if not exc.expected:
        logger.opt(exception=exc).error(f"{exc.code} on {request.method} {request.url.path}: {exc.message}")
        return JSONResponse(status_code=exc.status_code, content={"detail": "internal_error"})
    return JSONResponse(status_code=exc.status_code, content=jsonable_encoder(exc.to_dict()))


def create_app() -> FastAPI:
    app = FastAPI(title=settings.APP_NAME)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.add_exception_handler(MoneyKakiError, _moneykaki_error)

    @app.on_event("startup")
    async def _startup():
        setup_logging()
        await init_db()
        if settings.CRON_ENABLED:
            challenge_scheduler.start()

    @app.on_event("shutdown")
    async def _shutdown():
        challenge_scheduler.shutdown()
        await close_db()

    app.include_router(health_router)
    app.include_router(auth_router)
    app.include_router(admin_router)
    app.include_router(rewards_router)
    app.include_router(assignments_router)
    app.include_router(challenges_router)
    app.include_router(merchants_router)
    app.include_router(transactions_router)
    app.include_router(goals_router)
    app.include_router(finances_router)
    app.include_router(analytics_router)
    app.include_router(wrappings_router)
    app.include_router(billing_router)

    return app
