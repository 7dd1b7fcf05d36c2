# linesight/config.py
"""
Runtime settings.

Values come from the process environment, optionally seeded from a `.env`
file at the working directory. Engine thresholds (trend rules, similarity
weights, health bands) are NOT settings; they live as constants next to the
code that applies them.
"""
from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from functools import lru_cache
from typing import List, Optional

from dotenv import load_dotenv

load_dotenv()

DEFAULT_DATABASE_URL = "sqlite:///./linesight.db"
DEFAULT_CORS_ORIGINS = [
    "http://localhost:3000", "http://127.0.0.1:3000",
    "http://localhost:5173", "http://127.0.0.1:5173",
]

LOG_FORMAT = "%(asctime)s %(levelname)-7s %(name)s: %(message)s"


def _env_bool(name: str, default: bool = False) -> bool:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    return raw.strip().lower() in ("1", "true", "yes", "on")


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return int(raw)
    except ValueError:
        logging.getLogger(__name__).warning("Ignoring non-integer %s=%r; using %s", name, raw, default)
        return default


def _env_list(name: str, default: List[str]) -> List[str]:
    raw = os.getenv(name)
    if not raw:
        return list(default)
    return [item.strip() for item in raw.split(",") if item.strip()]


@dataclass(frozen=True)
class Settings:
    database_url: str
    sql_echo: bool
    tz: str
    log_level: str
    cors_origins: List[str]
    similarity_top_n: int
    flow_min_units: int
    default_range_hours: int


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Read settings once per process."""
    return Settings(
        database_url=os.getenv("DATABASE_URL") or DEFAULT_DATABASE_URL,
        sql_echo=_env_bool("SQL_ECHO", False),
        tz=os.getenv("TZ", "UTC"),
        log_level=os.getenv("LOG_LEVEL", "INFO").upper(),
        cors_origins=_env_list("CORS_ORIGINS", DEFAULT_CORS_ORIGINS),
        similarity_top_n=_env_int("SIMILARITY_TOP_N", 5),
        flow_min_units=_env_int("FLOW_MIN_UNITS", 20),
        default_range_hours=_env_int("DEFAULT_RANGE_HOURS", 24),
    )


def configure_logging(level: Optional[str] = None) -> None:
    """Install the root handler/format. Safe to call more than once."""
    lvl = (level or get_settings().log_level or "INFO").upper()
    logging.basicConfig(level=getattr(logging, lvl, logging.INFO), format=LOG_FORMAT)
    logging.getLogger().setLevel(getattr(logging, lvl, logging.INFO))
