# linesight/schemas/data_quality.py
from __future__ import annotations

from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, ConfigDict


class CoverageRowOut(BaseModel):
    step_id: int
    code: str
    name: str
    expected_units: int
    actual_units: int
    coverage: float
    status: str


class DuplicateRowOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    unit_id: int
    serial: str
    execution_count: int


class SerialCollisionOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    serial: str
    unit_ids: List[int]


class OutOfOrderOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    units_checked: int
    units_with_issues: int
    sample_serials: List[str]


class UnloopedRepeatsOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    pairs: int
    sample_serials: List[str]


class MissingCtqRowOut(BaseModel):
    ctq_id: int
    name: str
    step_name: str
    expected: int
    measured: int
    missing: int
    missing_rate: float
    status: str


class LatencyOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    sample_size: int
    avg_minutes: float
    p95_minutes: float


class DataQualityOut(BaseModel):
    window_from: Optional[datetime] = None
    window_to: Optional[datetime] = None
    coverage: List[CoverageRowOut]
    duplicates: List[DuplicateRowOut]
    serial_collisions: List[SerialCollisionOut]
    out_of_order: OutOfOrderOut
    unlooped_repeats: UnloopedRepeatsOut
    missing_ctqs: List[MissingCtqRowOut]
    unknown_directions: List[str]
    latency: Optional[LatencyOut] = None
