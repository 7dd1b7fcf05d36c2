# linesight/schemas/units.py
from __future__ import annotations

from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel

from linesight.schemas.common import LotOut
from linesight.schemas.episodes import SimilarEpisodeOut


class CtqReadingOut(BaseModel):
    ctq_id: int
    code: str
    name: str
    units: str = ""
    value: float
    in_spec: bool
    violation: Optional[str] = None        # below_lower / above_upper
    direction_recognized: bool = True
    lower_spec_limit: Optional[float] = None
    upper_spec_limit: Optional[float] = None
    target: Optional[float] = None


class TraceExecutionOut(BaseModel):
    id: int
    step_id: int
    step_code: str
    step_name: str
    step_type: str
    started_at: datetime
    finished_at: datetime
    recorded_result: str
    result: str                            # effective result, FAIL when a CTQ is out of spec
    failure_code: Optional[str] = None
    rework_loop_id: Optional[str] = None
    station_code: Optional[str] = None
    fixture_code: Optional[str] = None
    loop_index: Optional[int] = None
    loop_position: Optional[str] = None    # start / middle / end / single
    ctqs: List[CtqReadingOut]


class UnitSummaryOut(BaseModel):
    id: int
    serial: str
    created_at: Optional[datetime] = None
    final_result: Optional[str] = None
    rework_loop_count: int


class UnitTraceOut(BaseModel):
    unit: UnitSummaryOut
    kit_id: Optional[int] = None
    lots: List[LotOut]
    executions: List[TraceExecutionOut]
    episodes: List[SimilarEpisodeOut]
