# linesight/services/unit_trace.py
"""
Full history of one unit: executions in time order with loop markers, CTQ
verdicts, the kit's lots and the closest past episodes.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Dict, List, Optional

from linesight.domain import (
    ComponentLot,
    CtqDefinition,
    Execution,
    ExecutionResult,
    Measurement,
    StepDefinition,
    Unit,
    enum_value,
)
from linesight.errors import NotFoundError
from linesight.services.ctq_spec import SpecVerdict, evaluate_measurement
from linesight.services.ordering import EPOCH, as_utc, sort_executions
from linesight.services.reader import normalize_serial
from linesight.services.rework_loops import LoopMarker, count_rework_loops, track_rework_loops
from linesight.services.similarity import EpisodeMatch, SimilarityQuery, rank_similar_episodes

logger = logging.getLogger(__name__)

TRACE_EPISODE_LIMIT = 3


@dataclass(frozen=True)
class CtqReading:
    measurement: Measurement
    ctq: Optional[CtqDefinition]
    verdict: SpecVerdict


@dataclass(frozen=True)
class TraceStep:
    execution: Execution
    step: Optional[StepDefinition]
    effective_result: str
    loop: Optional[LoopMarker] = None
    ctqs: List[CtqReading] = field(default_factory=list)

    @property
    def started_at(self) -> datetime:
        return as_utc(self.execution.started_at or self.execution.completed_at) or EPOCH

    @property
    def finished_at(self) -> datetime:
        return as_utc(self.execution.completed_at or self.execution.started_at) or EPOCH


@dataclass(frozen=True)
class UnitTrace:
    unit: Unit
    final_result: Optional[str]
    rework_loop_count: int
    lots: List[ComponentLot] = field(default_factory=list)
    steps: List[TraceStep] = field(default_factory=list)
    episodes: List[EpisodeMatch] = field(default_factory=list)


def pick_unit(units: List[Unit], serial: str) -> Unit:
    """Newest unit wins when a serial was ingested more than once."""
    if not units:
        raise NotFoundError("unit", serial)
    if len(units) > 1:
        logger.warning("Serial %s maps to %d units; using the most recently created", serial, len(units))
    return max(units, key=lambda u: (as_utc(u.created_at) or EPOCH, u.id))


def effective_result(execution: Execution, readings: List[CtqReading]) -> str:
    """Recorded result, downgraded to FAIL when any CTQ reading is out of spec."""
    result = enum_value(execution.result)
    if result == ExecutionResult.SCRAP.value:
        return result
    if any(not r.verdict.in_spec for r in readings):
        return ExecutionResult.FAIL.value
    return result


def build_trace(
    unit: Unit,
    executions: List[Execution],
    measurements: List[Measurement],
    steps: List[StepDefinition],
    lots: List[ComponentLot],
    episodes,
    episode_limit: int = TRACE_EPISODE_LIMIT,
) -> UnitTrace:
    ordered = sort_executions(executions)
    steps_by_id = {s.id: s for s in steps}
    markers = track_rework_loops(ordered)

    by_execution: Dict[int, List[Measurement]] = {}
    for m in sorted(measurements, key=lambda m: m.id):
        by_execution.setdefault(m.execution_id, []).append(m)

    trace_steps: List[TraceStep] = []
    for e in ordered:
        readings = [
            CtqReading(
                measurement=m,
                ctq=m.ctq,
                verdict=evaluate_measurement(m.value, m.ctq) if m.ctq is not None else SpecVerdict(in_spec=True),
            )
            for m in by_execution.get(e.id, [])
        ]
        trace_steps.append(
            TraceStep(
                execution=e,
                step=steps_by_id.get(e.step_id),
                effective_result=effective_result(e, readings),
                loop=markers.get(e.id),
                ctqs=readings,
            )
        )

    last = ordered[-1] if ordered else None
    final = unit.final_result or (enum_value(last.result) if last is not None else None)

    query = SimilarityQuery.build(
        step_ids=[e.step_id for e in ordered],
        ctq_ids=[m.ctq_id for m in measurements],
        lot_ids=unit.lot_ids,
        fixture_ids=[e.fixture_id for e in ordered if e.fixture_id is not None],
        failure_codes=[e.failure_code for e in ordered if e.failure_code],
    )
    return UnitTrace(
        unit=unit,
        final_result=final,
        rework_loop_count=count_rework_loops(ordered),
        lots=lots,
        steps=trace_steps,
        episodes=rank_similar_episodes(query, episodes, limit=episode_limit),
    )


class UnitTraceService:
    def __init__(self, reader) -> None:
        self.reader = reader

    def trace(self, serial: str) -> UnitTrace:
        key = normalize_serial(serial)
        if not key:
            raise NotFoundError("unit", serial)
        unit = pick_unit(self.reader.fetch_units(serial=key), key)

        executions = self.reader.fetch_executions(unit_ids=[unit.id])
        measurements = self.reader.fetch_measurements(execution_ids=[e.id for e in executions]) if executions else []
        lot_order = {lot_id: i for i, lot_id in enumerate(unit.lot_ids)}
        lots = self.reader.fetch_lots(lot_ids=list(unit.lot_ids)) if unit.lot_ids else []
        lots = sorted(lots, key=lambda lot: lot_order.get(lot.id, 0))
        return build_trace(
            unit,
            executions,
            measurements,
            self.reader.fetch_steps(),
            lots,
            self.reader.fetch_episodes(),
        )
