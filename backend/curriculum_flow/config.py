"""Database location, session secret, cache paths and logging setup."""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from pathlib import Path

DATABASE_URL = os.environ.get("CURRICULUM_FLOW_DATABASE_URL", "sqlite:///./curriculum_flow.db")
SESSION_SECRET = os.environ.get("CURRICULUM_FLOW_SESSION_SECRET", "change-me")
DATA_DIR = Path(os.environ.get("CURRICULUM_FLOW_DATA_DIR", Path.home() / ".local" / "share" / "curriculum_flow"))
CACHE_PATH = DATA_DIR / "curriculum_cache.json"
LOG_LEVEL = os.environ.get("CURRICULUM_FLOW_LOG_LEVEL", "INFO")

COURSE_TYPES = ("NB", "NP", "NE", "NA")
MAX_WEEKLY_SLOTS = 3
WEEKDAYS = ("Monday", "Tuesday", "Wednesday", "Thursday", "Friday")
TIME_SLOTS = ("07:00", "08:45", "10:15")

# Graph layout, one column per period and one line per row.
PERIOD_WIDTH = 230
ROW_HEIGHT = 150


@dataclass
class Settings:
    database_url: str = DATABASE_URL
    session_secret: str = SESSION_SECRET
    cache_path: Path = CACHE_PATH
    weekdays: tuple[str, ...] = WEEKDAYS
    time_slots: tuple[str, ...] = TIME_SLOTS
    seed_users: dict[str, str] = field(default_factory=lambda: {"staff_admin": "staff_admin"})


def configure_logging(level: str | int = LOG_LEVEL) -> None:
    logging.basicConfig(level=level, format="%(asctime)s - %(name)s - %(levelname)s - %(message)s")
