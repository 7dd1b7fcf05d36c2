# linesight/models/episode.py
from __future__ import annotations

from datetime import datetime
from typing import Any, Optional

from sqlalchemy import JSON, DateTime, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from linesight.db import Base


class Episode(Base):
    __tablename__ = "episodes"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    title: Mapped[str] = mapped_column(String(255), nullable=False)
    summary: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    status: Mapped[str] = mapped_column(String(32), nullable=False)
    root_cause_category: Mapped[str] = mapped_column(String(32), nullable=False)
    effectiveness_tag: Mapped[Optional[str]] = mapped_column(String(32), nullable=True)
    started_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    ended_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    created_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    updated_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    # Free-form JSON written by investigators; shapes vary per episode.
    affected_steps: Mapped[Optional[Any]] = mapped_column(JSON, nullable=True)
    affected_ctqs: Mapped[Optional[Any]] = mapped_column(JSON, nullable=True)
    affected_lots: Mapped[Optional[Any]] = mapped_column(JSON, nullable=True)
    affected_fixtures: Mapped[Optional[Any]] = mapped_column(JSON, nullable=True)
    before_metrics: Mapped[Optional[Any]] = mapped_column(JSON, nullable=True)
    after_metrics: Mapped[Optional[Any]] = mapped_column(JSON, nullable=True)
    external_links: Mapped[Optional[Any]] = mapped_column(JSON, nullable=True)

    def __repr__(self) -> str:
        return f"<Episode {self.id} {self.title!r}>"
