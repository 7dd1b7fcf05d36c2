# linesight/models/production.py
from __future__ import annotations

from datetime import datetime
from typing import List, Optional

from sqlalchemy import DateTime, ForeignKey, Index, Integer, String
from sqlalchemy.orm import Mapped, mapped_column, relationship

from linesight.db import Base


class ComponentLot(Base):
    __tablename__ = "component_lots"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    lot_number: Mapped[str] = mapped_column(String(64), nullable=False, unique=True)
    component_name: Mapped[str] = mapped_column(String(128), nullable=False)
    supplier: Mapped[Optional[str]] = mapped_column(String(128), nullable=True)
    received_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    def __repr__(self) -> str:
        return f"<ComponentLot {self.lot_number} ({self.component_name})>"


class Kit(Base):
    __tablename__ = "kits"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    code: Mapped[str] = mapped_column(String(64), nullable=False)
    created_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    components: Mapped[List["KitComponentLot"]] = relationship("KitComponentLot", back_populates="kit")


class KitComponentLot(Base):
    __tablename__ = "kit_component_lots"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    kit_id: Mapped[int] = mapped_column(ForeignKey("kits.id"), nullable=False)
    component_lot_id: Mapped[int] = mapped_column(ForeignKey("component_lots.id"), nullable=False)
    quantity_used: Mapped[int] = mapped_column(Integer, nullable=False, default=1)

    kit: Mapped["Kit"] = relationship("Kit", back_populates="components")
    component_lot: Mapped["ComponentLot"] = relationship("ComponentLot")

    __table_args__ = (
        Index("ix_kit_component_lots_kit_id", "kit_id"),
        Index("ix_kit_component_lots_component_lot_id", "component_lot_id"),
    )


class Unit(Base):
    __tablename__ = "units"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    # Not unique upstream: duplicate serials are a known ingestion defect.
    serial: Mapped[str] = mapped_column(String(64), nullable=False)
    kit_id: Mapped[Optional[int]] = mapped_column(ForeignKey("kits.id"), nullable=True)
    final_result: Mapped[Optional[str]] = mapped_column(String(16), nullable=True)
    created_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    updated_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    kit: Mapped[Optional["Kit"]] = relationship("Kit")

    __table_args__ = (
        Index("ix_units_serial", "serial"),
        Index("ix_units_created_at", "created_at"),
    )

    def __repr__(self) -> str:
        return f"<Unit {self.serial}>"
