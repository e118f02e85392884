"""
Family Week Planner — Centralized configuration.

Loads all settings from .env and validates them.
This module is the foundation for every other module in the project.
"""

from __future__ import annotations

import os
from pathlib import Path

from dotenv import load_dotenv
from pydantic import BaseModel, field_validator

# Load .env from project root (two levels up from src/config.py)
_ENV_PATH = Path(__file__).resolve().parent.parent / ".env"
load_dotenv(_ENV_PATH)


class Settings(BaseModel):
    """Application settings loaded from environment variables."""

    # SQLite (Template Store, Override Store, members)
    DATABASE_PATH: str = "data/schedule.db"

    # Wall-clock used for "today", shift status and the morning briefing
    TIMEZONE: str = "UTC"

    # Fairness analyzer: trailing window in weeks
    FAIRNESS_WINDOW_WEEKS: int = 4

    # Client cache & sync
    CACHE_MAX_AGE_SECONDS: int = 300   # 0 → entries never age out
    PREFETCH_ADJACENT_WEEKS: bool = True

    # HTTP API (server side)
    API_HOST: str = "127.0.0.1"
    API_PORT: int = 8000

    # HTTP API (client side); empty means resolve in-process
    API_BASE_URL: str = ""
    API_TIMEOUT_SECONDS: float = 5.0

    # Telegram (only needed when the bot is started)
    TELEGRAM_BOT_TOKEN: str = ""
    ALLOWED_USER_IDS: list[int] = []
    BRIEFING_HOUR: int = 7

    @field_validator("ALLOWED_USER_IDS", mode="before")
    @classmethod
    def parse_user_ids(cls, v: str | list[int]) -> list[int]:
        if isinstance(v, list):
            return v
        if isinstance(v, str) and v.strip():
            return [int(uid.strip()) for uid in v.split(",") if uid.strip()]
        return []

    @field_validator("FAIRNESS_WINDOW_WEEKS", "CACHE_MAX_AGE_SECONDS", "API_PORT", "BRIEFING_HOUR", mode="before")
    @classmethod
    def parse_int(cls, v: str | int) -> int:
        return int(v)

    @field_validator("FAIRNESS_WINDOW_WEEKS")
    @classmethod
    def check_window(cls, v: int) -> int:
        if v < 1:
            raise ValueError("FAIRNESS_WINDOW_WEEKS must be at least 1")
        return v

    @field_validator("PREFETCH_ADJACENT_WEEKS", mode="before")
    @classmethod
    def parse_bool(cls, v: str | bool) -> bool:
        if isinstance(v, bool):
            return v
        return str(v).strip().lower() in ("1", "true", "yes", "on")


def _load_settings() -> Settings:
    """Load settings from environment."""
    return Settings(
        DATABASE_PATH=os.getenv("DATABASE_PATH", "data/schedule.db"),
        TIMEZONE=os.getenv("TIMEZONE", "UTC"),
        FAIRNESS_WINDOW_WEEKS=os.getenv("FAIRNESS_WINDOW_WEEKS", "4"),
        CACHE_MAX_AGE_SECONDS=os.getenv("CACHE_MAX_AGE_SECONDS", "300"),
        PREFETCH_ADJACENT_WEEKS=os.getenv("PREFETCH_ADJACENT_WEEKS", "true"),
        API_HOST=os.getenv("API_HOST", "127.0.0.1"),
        API_PORT=os.getenv("API_PORT", "8000"),
        API_BASE_URL=os.getenv("API_BASE_URL", ""),
        API_TIMEOUT_SECONDS=os.getenv("API_TIMEOUT_SECONDS", "5"),
        TELEGRAM_BOT_TOKEN=os.getenv("TELEGRAM_BOT_TOKEN", ""),
        ALLOWED_USER_IDS=os.getenv("ALLOWED_USER_IDS", ""),
        BRIEFING_HOUR=os.getenv("BRIEFING_HOUR", "7"),
    )


# Singleton — imported by all other modules as:
#   from src.config import settings
settings = _load_settings()
