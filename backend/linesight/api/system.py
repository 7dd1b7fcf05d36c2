# linesight/api/system.py
from __future__ import annotations

import logging
from datetime import datetime
from zoneinfo import ZoneInfo

from fastapi import APIRouter
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError

from linesight.config import get_settings
from linesight.db import engine

logger = logging.getLogger(__name__)

router = APIRouter(tags=["ops"])

APP_NAME = "LineSight Quality Analytics"


def _db_driver_from_url(url: str | None) -> str | None:
    if not url or "://" not in url:
        return None
    scheme = url.split("://", 1)[0]  # e.g., "postgresql+psycopg2"
    if "+" in scheme:
        return scheme.split("+", 1)[1]  # "psycopg2"
    return scheme  # "sqlite", "postgresql"


@router.get("/health")
def health():
    """Liveness check with a lightweight DB probe and local time."""
    settings = get_settings()
    now_local = datetime.now(ZoneInfo(settings.tz)).isoformat()

    db = {"status": "skip", "driver": _db_driver_from_url(settings.database_url)}
    try:
        with engine.connect() as conn:
            conn.execute(text("SELECT 1"))
        db["status"] = "ok"
    except SQLAlchemyError as e:
        logger.warning("Health probe could not reach the store: %s", type(e).__name__)
        db["status"] = f"error: {type(e).__name__}"

    return {
        "status": "ok",
        "time": {"tz": settings.tz, "now": now_local},
        "db": db,
    }


@router.get("/version")
def version():
    """Minimal runtime info; confirms DB driver for the UI."""
    settings = get_settings()
    return {
        "app": APP_NAME,
        "db_driver": _db_driver_from_url(settings.database_url),
        "tz": settings.tz,
    }
