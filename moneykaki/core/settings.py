from __future__ import annotations

from pathlib import Path
from dotenv import load_dotenv
from pydantic_settings import BaseSettings, SettingsConfigDict

# .env lives next to main.py
ENV_PATH = Path(__file__).resolve().parent.parent.parent / ".env"
if ENV_PATH.exists():
    load_dotenv(ENV_PATH)


class Settings(BaseSettings):
    # --- App ---
    APP_NAME: str = "MoneyKaki"

    # --- Auth ---
    JWT_SECRET: str = "change-me"
    JWT_ALG: str = "HS256"
    JWT_EXPIRE_DAYS: int = 14
    COOKIE_NAME: str = "moneykaki_token"

    # --- Database ---
    DATABASE_URL: str = "sqlite+aiosqlite:///./moneykaki.db"

    # --- Admin bootstrap ---
    DEFAULT_ADMIN_EMAIL: str = "admin@moneykaki.local"
    DEFAULT_ADMIN_USERNAME: str = "admin"
    DEFAULT_ADMIN_PASSWORD: str = "000000"

    # --- Economy ---
    SIGNUP_BONUS_POINTS: int = 0

    # ================= Stripe =================
    STRIPE_SECRET_KEY: str = ""
    STRIPE_WEBHOOK_SECRET: str = ""
    STRIPE_SUCCESS_URL: str = "https://moneykaki.vercel.app/payment-success"
    STRIPE_CANCEL_URL: str = "https://moneykaki.vercel.app/payment-failed"
    STRIPE_WEBHOOK_TOLERANCE_SECONDS: int = 300
    # ==========================================

    # --- AI extraction ---
    OPENAI_API_KEY: str = ""
    OPENAI_MODEL: str = "gpt-4.1"

    # --- Nightly challenge job ---
    CRON_ENABLED: bool = True
    CRON_HOUR: int = 0
    CRON_MINUTE: int = 0
    CRON_TIMEZONE: str = "UTC"

    # --- Logging ---
    LOG_LEVEL: str = "INFO"
    LOG_DIR: str = "logs"

    model_config = SettingsConfigDict(
        env_file=ENV_PATH,
        env_file_encoding="utf-8",
        extra="ignore"
    )


settings = Settings()
