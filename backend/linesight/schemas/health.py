# linesight/schemas/health.py
"""Lot and fixture health tables."""
from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import List, Optional

from pydantic import BaseModel

from linesight.schemas.common import CtqOut


class Health(str, Enum):
    GOOD = "GOOD"
    WARN = "WARN"
    BAD = "BAD"


class LotSummaryOut(BaseModel):
    id: int
    lot_number: str
    component_name: str
    supplier: Optional[str] = None
    received_at: Optional[datetime] = None
    units_built: int
    yield_rate: float
    rework_rate: float
    scrap_rate: float
    correlated_failure_rate: float
    episode_count: int
    health: Health


class LotsOut(BaseModel):
    lots: List[LotSummaryOut]


class HeatmapLotOut(BaseModel):
    id: int
    lot_number: str
    component_name: str
    supplier: Optional[str] = None


class LotHeatmapOut(BaseModel):
    days: int
    window_from: Optional[datetime] = None
    window_to: Optional[datetime] = None
    lots: List[HeatmapLotOut]
    ctqs: List[CtqOut]
    tested: List[List[int]]
    fails: List[List[int]]
    matrix: List[List[float]]   # fails / tested, 0 where untested


class FixtureSummaryOut(BaseModel):
    id: int
    code: str
    fixture_type: Optional[str] = None
    station_code: Optional[str] = None
    status: Optional[str] = None
    last_calibrated_at: Optional[datetime] = None
    usage_count: int
    correlated_failure_rate: float
    episode_count: int
    calibration_overdue: bool
    health: Health


class FixturesOut(BaseModel):
    fixtures: List[FixtureSummaryOut]
