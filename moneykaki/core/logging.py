"""
Logging configuration with loguru.
"""
import logging
import sys
from pathlib import Path

from loguru import logger

from moneykaki.core.settings import settings


def setup_logging() -> None:
    """Replace loguru's default sink with console + daily rotating file output."""
    logger.remove()

    logger.add(
        sys.stdout,
        format=(
            "<green>{time:YYYY-MM-DD HH:mm:ss}</green> | "
            "<level>{level: <8}</level> | "
            "<cyan>{name}</cyan>:<cyan>{function}</cyan>:<cyan>{line}</cyan> | "
            "<level>{message}</level>"
        ),
        level=settings.LOG_LEVEL,
        colorize=True,
    )

    if settings.LOG_DIR:
        logs_dir = Path(settings.LOG_DIR)
        logs_dir.mkdir(parents=True, exist_ok=True)
        logger.add(
            logs_dir / "moneykaki_{time:YYYY-MM-DD}.log",
            format="{time:YYYY-MM-DD HH:mm:ss} | {level: <8} | {name}:{function}:{line} | {message}",
            level="DEBUG",
            rotation="00:00",
            retention="14 days",
            compression="zip",
            encoding="utf-8",
        )

    logging.getLogger("sqlalchemy.engine").setLevel(logging.ERROR)
    logging.getLogger("apscheduler").setLevel(logging.WARNING)
    logging.getLogger("httpx").setLevel(logging.WARNING)

    logger.info(f"{settings.APP_NAME} logging initialized | level: {settings.LOG_LEVEL}")
