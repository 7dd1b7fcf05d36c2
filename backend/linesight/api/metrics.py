from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends, Query

from linesight.config import get_settings
from linesight.dependencies import get_reader
from linesight.schemas.metrics import (
    FlowEdgeOut,
    FlowNodeOut,
    LineOverviewOut,
    PopulationYieldOut,
    ReworkFlowOut,
    StationMetricOut,
    StationsOut,
    StepYieldOut,
    TimeBucketOut,
    TrendScenarioOut,
    TrendsOut,
)
from linesight.services.flow_graph import ReworkFlowService
from linesight.services.line_overview import Bucket, LineOverviewService
from linesight.services.stations import StationMetric, StationMetricsService, StationWindow
from linesight.services.trends import TrendDetector
from linesight.services.yields import PopulationYield, StepYield


router = APIRouter(prefix="/metrics", tags=["Metrics"])


# ----------------- Mappers -----------------

def _step_yield(sy: StepYield) -> StepYieldOut:
    return StepYieldOut(
        step_id=sy.step.id,
        code=sy.step.code,
        name=sy.step.name,
        sequence=sy.step.sequence,
        units_reached=sy.stats.units_reached,
        first_pass_units=sy.stats.first_pass_units,
        fpy=sy.stats.fpy,
        rework_rate=sy.stats.rework_rate,
        scrap_rate=sy.stats.scrap_rate,
        execution_yield=sy.stats.execution_yield,
    )


def _population(p: PopulationYield) -> PopulationYieldOut:
    return PopulationYieldOut(
        line_fpy=p.line_fpy,
        rty=p.rty,
        throughput=p.throughput,
        average_throughput=p.average_throughput,
        rework_rate=p.rework_rate,
        scrap_rate=p.scrap_rate,
        units_with_executions=p.units_with_executions,
        status=p.status,
    )


def _station(m: Optional[StationMetric]) -> Optional[StationMetricOut]:
    if m is None:
        return None
    return StationMetricOut(
        step_id=m.step.id,
        code=m.step.code,
        name=m.step.name,
        step_type=m.step.step_type,
        sequence=m.step.sequence,
        is_excluded=m.is_excluded,
        throughput=m.throughput,
        fpy=m.stats.fpy,
        yield_rate=m.stats.execution_yield,
        rework_rate=m.stats.rework_rate,
        scrap_rate=m.stats.scrap_rate,
    )


# ----------------- Endpoints -----------------

@router.get("/line-overview", response_model=LineOverviewOut)
def line_overview(
    range_hours: Optional[int] = Query(None, alias="range", ge=1, le=24 * 90, description="Trailing hours"),
    bucket: Bucket = Query(Bucket.DAY),
    reader=Depends(get_reader),
):
    hours = range_hours if range_hours is not None else get_settings().default_range_hours
    result = LineOverviewService(reader).overview(range_hours=hours, bucket=bucket)
    return LineOverviewOut(
        range_hours=result.range_hours,
        bucket=result.bucket.value,
        window_from=result.window_from,
        window_to=result.window_to,
        overall=_population(result.overall),
        time_buckets=[
            TimeBucketOut(
                label=b.label,
                start=b.start,
                line_fpy=b.metrics.line_fpy,
                rty=b.metrics.rty,
                throughput=b.metrics.throughput,
                rework_rate=b.metrics.rework_rate,
                scrap_rate=b.metrics.scrap_rate,
            )
            for b in result.buckets
        ],
        stations=[_step_yield(sy) for sy in result.stations],
    )


@router.get("/stations", response_model=StationsOut)
def stations(
    window: StationWindow = Query(StationWindow.LAST_24H),
    reader=Depends(get_reader),
):
    report = StationMetricsService(reader).report(window)
    return StationsOut(
        window=report.window.value,
        window_from=report.window_from,
        window_to=report.window_to,
        stations=[_station(m) for m in report.stations],
        worst_by_fpy=_station(report.worst_by_fpy),
        worst_by_rework=_station(report.worst_by_rework),
    )


@router.get("/trends", response_model=TrendsOut)
def trends(reader=Depends(get_reader)):
    report = TrendDetector(reader).detect()
    return TrendsOut(
        anchor=report.anchor,
        baseline_from=report.baseline_from,
        current_from=report.current_from,
        scenarios=[TrendScenarioOut.model_validate(s) for s in report.scenarios],
    )


@router.get("/rework-flow", response_model=ReworkFlowOut)
def rework_flow(
    range_hours: Optional[int] = Query(None, alias="range", ge=1, le=24 * 90),
    min_units: Optional[int] = Query(None, ge=0),
    reader=Depends(get_reader),
):
    settings = get_settings()
    hours = range_hours if range_hours is not None else settings.default_range_hours
    threshold = min_units if min_units is not None else settings.flow_min_units
    graph = ReworkFlowService(reader).graph(hours, min_units=threshold)
    return ReworkFlowOut(
        range_hours=hours,
        total_units=graph.total_units,
        min_units=graph.min_units,
        sufficient=graph.sufficient,
        nodes=[FlowNodeOut.model_validate(n) for n in graph.nodes],
        links=[FlowEdgeOut.model_validate(e) for e in graph.edges],
    )
