# linesight/schemas/metrics.py
from __future__ import annotations

from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, ConfigDict


# ---------- Yield tables ----------
class StepYieldOut(BaseModel):
    step_id: int
    code: str
    name: str
    sequence: int
    units_reached: int
    first_pass_units: int
    fpy: float
    rework_rate: float
    scrap_rate: float
    execution_yield: float


class PopulationYieldOut(BaseModel):
    line_fpy: float
    rty: float
    throughput: int
    average_throughput: float   # units / hour
    rework_rate: float
    scrap_rate: float
    units_with_executions: int
    status: str                 # OK / WARNING / CRITICAL


# ---------- /metrics/line-overview ----------
class TimeBucketOut(BaseModel):
    label: str
    start: datetime
    line_fpy: float
    rty: float
    throughput: int
    rework_rate: float
    scrap_rate: float


class LineOverviewOut(BaseModel):
    range_hours: int
    bucket: str
    window_from: Optional[datetime] = None
    window_to: Optional[datetime] = None
    overall: PopulationYieldOut
    time_buckets: List[TimeBucketOut]
    stations: List[StepYieldOut]    # worst FPY first


# ---------- /metrics/stations ----------
class StationMetricOut(BaseModel):
    step_id: int
    code: str
    name: str
    step_type: str
    sequence: int
    is_excluded: bool
    throughput: int
    fpy: float
    yield_rate: float
    rework_rate: float
    scrap_rate: float


class StationsOut(BaseModel):
    window: str
    window_from: Optional[datetime] = None
    window_to: Optional[datetime] = None
    stations: List[StationMetricOut]
    worst_by_fpy: Optional[StationMetricOut] = None
    worst_by_rework: Optional[StationMetricOut] = None


# ---------- /metrics/trends ----------
class TrendScenarioOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    type: str
    severity: str            # critical / warning / info
    title: str
    summary: str
    step_id: int
    station_code: str
    station_name: str
    window: str
    baseline_value: float
    current_value: float
    baseline_units: int
    current_units: int
    recommended_action: str


class TrendsOut(BaseModel):
    anchor: Optional[datetime] = None
    baseline_from: Optional[datetime] = None
    current_from: Optional[datetime] = None
    scenarios: List[TrendScenarioOut]


# ---------- /metrics/rework-flow ----------
class FlowNodeOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    label: str


class FlowEdgeOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    source: str
    target: str
    value: int
    kind: str                # forward / rework / scrap


class ReworkFlowOut(BaseModel):
    range_hours: int
    total_units: int
    min_units: int
    sufficient: bool
    nodes: List[FlowNodeOut]
    links: List[FlowEdgeOut]
