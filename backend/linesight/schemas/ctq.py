# linesight/schemas/ctq.py
from __future__ import annotations

from datetime import date, datetime
from typing import List, Optional

from pydantic import BaseModel, ConfigDict

from linesight.schemas.common import CtqOut


class HistogramBinOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    lower: float
    upper: float
    count: int


class DailyPointOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    day: date                 # local date in the requested tz
    mean: float
    count: int
    center: float
    ucl: float
    lcl: float


class BreakdownOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    key: str
    fail: int
    total: int
    fail_rate: float
    fail_share: float


class CtqSummaryOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    ctq: CtqOut
    tz: str
    days: Optional[int] = None
    window_from: Optional[datetime] = None
    window_to: Optional[datetime] = None
    count: int
    mean: Optional[float] = None
    std_dev: Optional[float] = None
    min_value: Optional[float] = None
    max_value: Optional[float] = None
    out_of_spec: int
    out_of_spec_rate: float
    cp: Optional[float] = None
    cpk: Optional[float] = None
    histogram: List[HistogramBinOut]
    daily: List[DailyPointOut]
    worst_lots: List[BreakdownOut]
    worst_fixtures: List[BreakdownOut]
    worst_stations: List[BreakdownOut]
