from __future__ import annotations

from typing import Optional

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.cron import CronTrigger
from loguru import logger

from moneykaki.core.settings import settings
from moneykaki.services.streak_evaluator import run_nightly_evaluator

JOB_ID = "nightly_challenge_evaluator"


class ChallengeScheduler:
    def __init__(self, hour: int | None = None, minute: int | None = None, timezone: str | None = None):
        self.hour = settings.CRON_HOUR if hour is None else hour
        self.minute = settings.CRON_MINUTE if minute is None else minute
        self.timezone = timezone or settings.CRON_TIMEZONE
        self.scheduler: Optional[AsyncIOScheduler] = None

    @property
    def is_running(self) -> bool:
        return self.scheduler is not None and self.scheduler.running

    def start(self) -> None:
        if self.is_running:
            logger.warning("Challenge scheduler is already running")
            return

        self.scheduler = AsyncIOScheduler(timezone=self.timezone)
        self.scheduler.add_job(
            run_nightly_evaluator,
            trigger=CronTrigger(hour=self.hour, minute=self.minute, timezone=self.timezone),
            id=JOB_ID,
            name="Award daily app-open and streak challenge points",
            replace_existing=True,
            max_instances=1,
            coalesce=True,
            misfire_grace_time=3600,
        )
        self.scheduler.start()
        logger.info(
            f"Challenge evaluator scheduled daily at {self.hour:02d}:{self.minute:02d} {self.timezone}"
        )

    def shutdown(self) -> None:
        if not self.is_running:
            return
        self.scheduler.shutdown(wait=False)
        self.scheduler = None
        logger.info("Challenge scheduler stopped")


challenge_scheduler = ChallengeScheduler()
