"""
TaskFlow Notifier — Centralized configuration.

Loads all settings from .env. Nothing is strictly required at import time:
each channel reports itself unconfigured when its keys are missing, and the
bot entry point checks for its own token before starting.
"""

from __future__ import annotations

import os
from pathlib import Path

from dotenv import load_dotenv
from pydantic import BaseModel, field_validator

# Load .env from project root (one level up from taskflow/config.py)
_ENV_PATH = Path(__file__).resolve().parent.parent / ".env"
load_dotenv(_ENV_PATH)


class Settings(BaseModel):
    """Application settings loaded from environment variables."""

    # Telegram bot (scheduler host + Telegram channel)
    TELEGRAM_BOT_TOKEN: str = ""
    TELEGRAM_BOT_USERNAME: str = "TaskFlowBot"

    # Telegram users allowed to manage the WhatsApp session
    ADMIN_USER_IDS: list[int] = []

    # WhatsApp hosted gateway (fallback when the paired session is down)
    WHATSAPP_API_KEY: str = ""
    WHATSAPP_FROM_NUMBER: str = ""
    WHATSAPP_API_URL: str = "https://api.sendzen.io/v1/messages"

    # Self-hosted WhatsApp Web bridge (QR-paired session)
    WHATSAPP_BRIDGE_URL: str = "http://localhost:3000"
    WHATSAPP_BRIDGE_API_KEY: str = ""
    WHATSAPP_SESSION_NAME: str = "default"

    # SQLite
    DATABASE_PATH: str = "data/taskflow.db"

    # Scheduling
    TIMEZONE: str = "UTC"
    REMINDER_INTERVAL_SECONDS: int = 60
    DAILY_DIGEST_HOUR: int = 8
    RECURRENCE_HOUR: int = 0

    # Deep links in notifications
    APP_URL: str = "http://localhost:3000"

    HTTP_TIMEOUT_SECONDS: float = 10.0

    @field_validator("ADMIN_USER_IDS", mode="before")
    @classmethod
    def parse_user_ids(cls, v: str | list[int]) -> list[int]:
        if isinstance(v, list):
            return v
        if isinstance(v, str) and v.strip():
            return [int(uid.strip()) for uid in v.split(",") if uid.strip()]
        return []

    @field_validator(
        "REMINDER_INTERVAL_SECONDS", "DAILY_DIGEST_HOUR", "RECURRENCE_HOUR",
        mode="before",
    )
    @classmethod
    def parse_int(cls, v: str | int) -> int:
        return int(v)


def _load_settings() -> Settings:
    """Load settings from environment."""
    return Settings(
        TELEGRAM_BOT_TOKEN=os.getenv("TELEGRAM_BOT_TOKEN", "").strip(),
        TELEGRAM_BOT_USERNAME=os.getenv("TELEGRAM_BOT_USERNAME", "TaskFlowBot"),
        ADMIN_USER_IDS=os.getenv("ADMIN_USER_IDS", ""),
        WHATSAPP_API_KEY=os.getenv("WHATSAPP_API_KEY", "").strip(),
        WHATSAPP_FROM_NUMBER=os.getenv("WHATSAPP_FROM_NUMBER", "").strip(),
        WHATSAPP_API_URL=os.getenv(
            "WHATSAPP_API_URL", "https://api.sendzen.io/v1/messages",
        ),
        WHATSAPP_BRIDGE_URL=os.getenv("WHATSAPP_BRIDGE_URL", "http://localhost:3000"),
        WHATSAPP_BRIDGE_API_KEY=os.getenv("WHATSAPP_BRIDGE_API_KEY", ""),
        WHATSAPP_SESSION_NAME=os.getenv("WHATSAPP_SESSION_NAME", "default"),
        DATABASE_PATH=os.getenv("DATABASE_PATH", "data/taskflow.db"),
        TIMEZONE=os.getenv("TIMEZONE", "UTC"),
        REMINDER_INTERVAL_SECONDS=os.getenv("REMINDER_INTERVAL_SECONDS", "60"),
        DAILY_DIGEST_HOUR=os.getenv("DAILY_DIGEST_HOUR", "8"),
        RECURRENCE_HOUR=os.getenv("RECURRENCE_HOUR", "0"),
        APP_URL=os.getenv("APP_URL", "http://localhost:3000"),
        HTTP_TIMEOUT_SECONDS=float(os.getenv("HTTP_TIMEOUT_SECONDS", "10")),
    )


# Singleton — imported by all other modules as:
#   from taskflow.config import settings
settings = _load_settings()
