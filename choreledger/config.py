"""
Chore Ledger — Centralized configuration.

Loads all settings from .env and validates them.
This module is the foundation for every other module in the project.
"""

from __future__ import annotations

import os
import sys
from pathlib import Path
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from dotenv import load_dotenv
from pydantic import BaseModel, ValidationError, field_validator

# Load .env from project root (one level up from choreledger/config.py)
_ENV_PATH = Path(__file__).resolve().parent.parent / ".env"
load_dotenv(_ENV_PATH)


class Settings(BaseModel):
    """Application settings loaded from environment variables."""

    # SQLite
    DATABASE_PATH: str = "data/ledger.db"
    DB_TIMEOUT_SECONDS: float = 30.0

    # Household-local calendar: every completion date and weekday uses this zone
    TIMEZONE: str = "Asia/Jerusalem"

    # Ledger policy
    UNDO_WINDOW_MINUTES: int = 5
    STREAK_MILESTONES: list[int] = [7, 14, 30, 60, 100]

    LOG_LEVEL: str = "INFO"

    @field_validator("TIMEZONE")
    @classmethod
    def check_timezone(cls, v: str) -> str:
        try:
            ZoneInfo(v)
        except (ZoneInfoNotFoundError, ValueError) as exc:
            raise ValueError(f"Unknown timezone: {v!r}") from exc
        return v

    @field_validator("STREAK_MILESTONES", mode="before")
    @classmethod
    def parse_milestones(cls, v: str | list[int]) -> list[int]:
        if isinstance(v, list):
            return sorted(v)
        if isinstance(v, str) and v.strip():
            return sorted(int(n.strip()) for n in v.split(",") if n.strip())
        return []

    @field_validator("UNDO_WINDOW_MINUTES", mode="before")
    @classmethod
    def parse_window(cls, v: str | int) -> int:
        minutes = int(v)
        if minutes < 0:
            raise ValueError("UNDO_WINDOW_MINUTES must be >= 0")
        return minutes

    @property
    def tz(self) -> ZoneInfo:
        return ZoneInfo(self.TIMEZONE)


def _load_settings() -> Settings:
    """Load settings from environment, exiting on invalid values."""
    try:
        return Settings(
            DATABASE_PATH=os.getenv("DATABASE_PATH", "data/ledger.db"),
            DB_TIMEOUT_SECONDS=os.getenv("DB_TIMEOUT_SECONDS", "30"),
            TIMEZONE=os.getenv("TIMEZONE", "Asia/Jerusalem"),
            UNDO_WINDOW_MINUTES=os.getenv("UNDO_WINDOW_MINUTES", "5"),
            STREAK_MILESTONES=os.getenv("STREAK_MILESTONES", "7,14,30,60,100"),
            LOG_LEVEL=os.getenv("LOG_LEVEL", "INFO").upper(),
        )
    except ValidationError as exc:
        print(f"ERROR: invalid configuration in .env\n{exc}", file=sys.stderr)
        sys.exit(1)


# Singleton — imported by all other modules as:
#   from choreledger.config import settings
settings = _load_settings()
