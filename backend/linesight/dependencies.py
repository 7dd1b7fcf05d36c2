"""
Shared FastAPI dependency helpers.

`get_db` hands each request its own SQLAlchemy session and closes it
afterwards; `get_reader` wraps that session in the read interface every
service expects. Tests override `get_reader` with an in-memory fake.
"""

from typing import Generator

from fastapi import Depends
from sqlalchemy.orm import Session

from linesight.db import SessionLocal
from linesight.services.reader import QualityReader, SqlQualityReader


def get_db() -> Generator[Session, None, None]:
    """Yield a database session and close it after the request."""
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def get_reader(db: Session = Depends(get_db)) -> QualityReader:
    return SqlQualityReader(db)
