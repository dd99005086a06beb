"""
75 Hard Tracker — Centralized configuration.

Loads all settings from .env and validates required keys.
This module is the foundation for every other module in the project.
"""

from __future__ import annotations

import os
import sys
from pathlib import Path

from dotenv import load_dotenv
from pydantic import BaseModel, field_validator

# Load .env from project root (two levels up from hard75/config.py)
_ENV_PATH = Path(__file__).resolve().parent.parent / ".env"
load_dotenv(_ENV_PATH)


class Settings(BaseModel):
    """Application settings loaded from environment variables."""

    # Remote API (REST contract in front of the hosted database)
    API_BASE_URL: str
    API_TOKEN: str = ""             # bearer token for the authenticated session
    API_TIMEOUT_SECONDS: float = 10

    # Local cache (SQLite key/value file on the device)
    CACHE_PATH: str = "data/cache.db"

    # Sync
    SYNC_INTERVAL_SECONDS: int = 300
    PERSIST_PENDING_CHANGES: bool = True
    DEFAULT_TASK_CONCURRENCY: int = 3

    # Diagnostics
    ERROR_HISTORY_LIMIT: int = 100
    LOG_LEVEL: str = "INFO"

    # Telegram front-end (only needed when running the bot)
    TELEGRAM_BOT_TOKEN: str = ""
    ALLOWED_USER_IDS: list[int] = []
    TIMEZONE: str = "UTC"
    REMINDER_HOUR: int = 20         # evening nudge about unfinished tasks

    @field_validator("API_BASE_URL")
    @classmethod
    def strip_trailing_slash(cls, v: str) -> str:
        return v.rstrip("/")

    @field_validator("ALLOWED_USER_IDS", mode="before")
    @classmethod
    def parse_user_ids(cls, v: str | list[int]) -> list[int]:
        if isinstance(v, list):
            return v
        if isinstance(v, str) and v.strip():
            return [int(uid.strip()) for uid in v.split(",") if uid.strip()]
        return []

    @field_validator("PERSIST_PENDING_CHANGES", mode="before")
    @classmethod
    def parse_bool(cls, v: str | bool) -> bool:
        if isinstance(v, bool):
            return v
        return str(v).strip().lower() in ("1", "true", "yes", "on")

    @field_validator("REMINDER_HOUR")
    @classmethod
    def valid_hour(cls, v: int) -> int:
        if not 0 <= v <= 23:
            raise ValueError("must be between 0 and 23")
        return v

    @field_validator("SYNC_INTERVAL_SECONDS", "DEFAULT_TASK_CONCURRENCY", "ERROR_HISTORY_LIMIT")
    @classmethod
    def positive(cls, v: int) -> int:
        if v < 1:
            raise ValueError("must be at least 1")
        return v


def _load_settings() -> Settings:
    """Load settings from environment, validating required keys."""
    base_url = os.getenv("API_BASE_URL", "")

    if not base_url or base_url.startswith("your-"):
        print("ERROR: Missing API_BASE_URL environment variable (set it in .env)", file=sys.stderr)
        sys.exit(1)

    return Settings(
        API_BASE_URL=base_url,
        API_TOKEN=os.getenv("API_TOKEN", ""),
        API_TIMEOUT_SECONDS=os.getenv("API_TIMEOUT_SECONDS", "10"),
        CACHE_PATH=os.getenv("CACHE_PATH", "data/cache.db"),
        SYNC_INTERVAL_SECONDS=os.getenv("SYNC_INTERVAL_SECONDS", "300"),
        PERSIST_PENDING_CHANGES=os.getenv("PERSIST_PENDING_CHANGES", "true"),
        DEFAULT_TASK_CONCURRENCY=os.getenv("DEFAULT_TASK_CONCURRENCY", "3"),
        ERROR_HISTORY_LIMIT=os.getenv("ERROR_HISTORY_LIMIT", "100"),
        LOG_LEVEL=os.getenv("LOG_LEVEL", "INFO"),
        TELEGRAM_BOT_TOKEN=os.getenv("TELEGRAM_BOT_TOKEN", ""),
        ALLOWED_USER_IDS=os.getenv("ALLOWED_USER_IDS", ""),
        TIMEZONE=os.getenv("TIMEZONE", "UTC"),
        REMINDER_HOUR=os.getenv("REMINDER_HOUR", "20"),
    )


# Singleton — imported by all other modules as:
#   from hard75.config import settings
settings = _load_settings()
