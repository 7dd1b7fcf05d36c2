# linesight/models/process.py
from __future__ import annotations

from datetime import datetime
from typing import Optional

from sqlalchemy import Boolean, DateTime, Float, ForeignKey, Index, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from linesight.db import Base


class ProcessStepDefinition(Base):
    __tablename__ = "process_step_definitions"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    code: Mapped[str] = mapped_column(String(64), nullable=False, unique=True)
    name: Mapped[str] = mapped_column(String(128), nullable=False)
    sequence: Mapped[int] = mapped_column(Integer, nullable=False)
    step_type: Mapped[str] = mapped_column(String(32), nullable=False, default="ASSEMBLY")
    can_scrap: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    def __repr__(self) -> str:
        return f"<ProcessStepDefinition {self.sequence}:{self.code}>"


class Fixture(Base):
    __tablename__ = "fixtures"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    code: Mapped[str] = mapped_column(String(64), nullable=False, unique=True)
    fixture_type: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    station_code: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    status: Mapped[Optional[str]] = mapped_column(String(32), nullable=True)
    last_calibrated_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    calibration_due_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)


class CTQDefinition(Base):
    __tablename__ = "ctq_definitions"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    code: Mapped[str] = mapped_column(String(64), nullable=False, unique=True)
    name: Mapped[str] = mapped_column(String(128), nullable=False)
    process_step_definition_id: Mapped[Optional[int]] = mapped_column(
        ForeignKey("process_step_definitions.id"), nullable=True
    )
    # TWO_SIDED / HIGHER_BETTER / LOWER_BETTER; kept as text so unknown values still load
    direction: Mapped[str] = mapped_column(String(32), nullable=False)
    lower_spec_limit: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    upper_spec_limit: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    target: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    units: Mapped[Optional[str]] = mapped_column(String(32), nullable=True)
    is_critical: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    step: Mapped[Optional["ProcessStepDefinition"]] = relationship("ProcessStepDefinition")


class ProcessStepExecution(Base):
    __tablename__ = "process_step_executions"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    unit_id: Mapped[int] = mapped_column(ForeignKey("units.id"), nullable=False)
    process_step_definition_id: Mapped[int] = mapped_column(ForeignKey("process_step_definitions.id"), nullable=False)
    station_code: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    fixture_id: Mapped[Optional[int]] = mapped_column(ForeignKey("fixtures.id"), nullable=True)
    operator_id: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    result: Mapped[str] = mapped_column(String(16), nullable=False)
    failure_code: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    rework_loop_id: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    original_failure_step_id: Mapped[Optional[int]] = mapped_column(
        ForeignKey("process_step_definitions.id"), nullable=True
    )
    started_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    completed_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    step: Mapped["ProcessStepDefinition"] = relationship(
        "ProcessStepDefinition", foreign_keys=[process_step_definition_id]
    )
    fixture: Mapped[Optional["Fixture"]] = relationship("Fixture")

    __table_args__ = (
        Index("ix_pse_unit_id", "unit_id"),
        Index("ix_pse_step_id", "process_step_definition_id"),
        Index("ix_pse_completed_at", "completed_at"),
        Index("ix_pse_started_at", "started_at"),
    )


class Measurement(Base):
    __tablename__ = "measurements"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    process_step_execution_id: Mapped[int] = mapped_column(
        ForeignKey("process_step_executions.id"), nullable=False
    )
    ctq_definition_id: Mapped[int] = mapped_column(ForeignKey("ctq_definitions.id"), nullable=False)
    value: Mapped[float] = mapped_column(Float, nullable=False)
    recorded_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    ctq: Mapped["CTQDefinition"] = relationship("CTQDefinition")

    __table_args__ = (
        Index("ix_measurements_execution_id", "process_step_execution_id"),
        Index("ix_measurements_ctq_id", "ctq_definition_id"),
        Index("ix_measurements_recorded_at", "recorded_at"),
    )
