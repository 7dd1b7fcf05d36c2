from __future__ import annotations

from fastapi import APIRouter, Depends

from linesight.api.similarity import match_out
from linesight.dependencies import get_reader
from linesight.domain import enum_value
from linesight.schemas.common import LotOut
from linesight.schemas.units import CtqReadingOut, TraceExecutionOut, UnitSummaryOut, UnitTraceOut
from linesight.services.unit_trace import CtqReading, TraceStep, UnitTraceService

router = APIRouter(prefix="/units", tags=["Units"])


def _reading(r: CtqReading) -> CtqReadingOut:
    ctq = r.ctq
    return CtqReadingOut(
        ctq_id=r.measurement.ctq_id,
        code=ctq.code if ctq else str(r.measurement.ctq_id),
        name=ctq.name if ctq else "",
        units=ctq.units if ctq else "",
        value=r.measurement.value,
        in_spec=r.verdict.in_spec,
        violation=r.verdict.violation,
        direction_recognized=r.verdict.direction_recognized,
        lower_spec_limit=ctq.lower_spec_limit if ctq else None,
        upper_spec_limit=ctq.upper_spec_limit if ctq else None,
        target=ctq.target if ctq else None,
    )


def _step(t: TraceStep) -> TraceExecutionOut:
    e = t.execution
    return TraceExecutionOut(
        id=e.id,
        step_id=e.step_id,
        step_code=e.step_code or (t.step.code if t.step else ""),
        step_name=t.step.name if t.step else (e.step_code or ""),
        step_type=t.step.step_type if t.step else "",
        started_at=t.started_at,
        finished_at=t.finished_at,
        recorded_result=enum_value(e.result),
        result=t.effective_result,
        failure_code=e.failure_code,
        rework_loop_id=e.rework_loop_id,
        station_code=e.station_code,
        fixture_code=e.fixture_code,
        loop_index=t.loop.loop_index if t.loop else None,
        loop_position=t.loop.position if t.loop else None,
        ctqs=[_reading(r) for r in t.ctqs],
    )


@router.get("/{serial}", response_model=UnitTraceOut)
def unit_trace(serial: str, reader=Depends(get_reader)):
    """Full trace of one unit; serial lookup ignores case and surrounding spaces."""
    trace = UnitTraceService(reader).trace(serial)
    return UnitTraceOut(
        unit=UnitSummaryOut(
            id=trace.unit.id,
            serial=trace.unit.serial,
            created_at=trace.unit.created_at,
            final_result=trace.final_result,
            rework_loop_count=trace.rework_loop_count,
        ),
        kit_id=trace.unit.kit_id,
        lots=[LotOut.model_validate(lot) for lot in trace.lots],
        executions=[_step(t) for t in trace.steps],
        episodes=[match_out(m) for m in trace.episodes],
    )
