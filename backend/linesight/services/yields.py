# linesight/services/yields.py
"""
Yield metrics over an execution population.

    FPY(step)    = units passing first time at step / units reaching step
    RTY          = Π FPY(step) over nominal steps reached by >= 1 unit
    rework rate  = units with a loop id anywhere, or > 1 execution at any step
                   / units with any execution
    scrap rate   = units whose latest execution is SCRAP / units with any execution
    throughput   = distinct units with a PASS at the terminal step

Every function here is pure over its input list and independent of its
order. Empty inputs give 0, never an exception.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Iterable, List, Optional, Sequence

from linesight.domain import Execution, StepDefinition
from linesight.services.first_pass import (
    is_pass,
    is_scrap,
    passed_all_steps_first_time,
    resolve_step,
)
from linesight.services.ordering import group_by_step, group_by_unit, latest

logger = logging.getLogger(__name__)

LINE_STATUS_OK = 0.98
LINE_STATUS_WARNING = 0.95


def ratio(numerator: float, denominator: float) -> float:
    return float(numerator) / float(denominator) if denominator > 0 else 0.0


# ----------------- Data classes -----------------

@dataclass(frozen=True)
class StepStats:
    units_reached: int = 0
    first_pass_units: int = 0
    reworked_units: int = 0
    scrapped_units: int = 0
    total_executions: int = 0
    pass_executions: int = 0

    @property
    def fpy(self) -> float:
        return ratio(self.first_pass_units, self.units_reached)

    @property
    def rework_rate(self) -> float:
        return ratio(self.reworked_units, self.units_reached)

    @property
    def scrap_rate(self) -> float:
        return ratio(self.scrapped_units, self.units_reached)

    @property
    def execution_yield(self) -> float:
        return ratio(self.pass_executions, self.total_executions)


@dataclass(frozen=True)
class StepYield:
    step: StepDefinition
    stats: StepStats

    @property
    def fpy(self) -> float:
        return self.stats.fpy


@dataclass(frozen=True)
class PopulationYield:
    step_yields: List[StepYield] = field(default_factory=list)
    rty: float = 0.0
    line_fpy: float = 0.0
    rework_rate: float = 0.0
    scrap_rate: float = 0.0
    throughput: int = 0
    average_throughput: float = 0.0
    units_with_executions: int = 0
    status: str = "OK"


# ----------------- Flow helpers -----------------

def nominal_flow(steps: Iterable[StepDefinition]) -> List[StepDefinition]:
    """Production flow in sequence order; debug/rework side-steps excluded."""
    return sorted((s for s in steps if not s.is_debug), key=lambda s: (s.sequence, s.id))


def terminal_step(steps: Iterable[StepDefinition]) -> Optional[StepDefinition]:
    flow = nominal_flow(steps)
    return flow[-1] if flow else None


# ----------------- Per-step -----------------

def compute_step_stats(executions: Iterable[Execution]) -> StepStats:
    """Stats for executions that all belong to one step."""
    execs = list(executions)
    outcomes = resolve_step(execs).values()
    return StepStats(
        units_reached=sum(1 for o in outcomes if o.reached),
        first_pass_units=sum(1 for o in outcomes if o.first_pass),
        reworked_units=sum(1 for o in outcomes if o.reworked),
        scrapped_units=sum(1 for o in outcomes if o.scrapped),
        total_executions=len(execs),
        pass_executions=sum(1 for e in execs if is_pass(e)),
    )


def compute_step_yields(
    executions: Iterable[Execution],
    steps: Iterable[StepDefinition],
) -> List[StepYield]:
    by_step = group_by_step(executions)
    ordered = sorted(steps, key=lambda s: (s.sequence, s.id))
    return [StepYield(step=s, stats=compute_step_stats(by_step.get(s.id, []))) for s in ordered]


def rolled_throughput_yield(step_yields: Iterable[StepYield]) -> float:
    """Product of FPYs over reached steps. Unreached steps are skipped, not zeroed."""
    product = 1.0
    reached_any = False
    for sy in step_yields:
        if sy.stats.units_reached == 0:
            continue
        reached_any = True
        product *= sy.fpy
    return product if reached_any else 0.0


# ----------------- Population -----------------

def unit_reworked(unit_execs: List[Execution]) -> bool:
    if any(e.rework_loop_id for e in unit_execs):
        return True
    return any(len(execs) > 1 for execs in group_by_step(unit_execs).values())


def rework_rate(executions: Iterable[Execution]) -> float:
    by_unit = group_by_unit(executions)
    reworked = sum(1 for execs in by_unit.values() if unit_reworked(execs))
    return ratio(reworked, len(by_unit))


def scrap_rate(executions: Iterable[Execution]) -> float:
    by_unit = group_by_unit(executions)
    scrapped = 0
    for execs in by_unit.values():
        last = latest(execs)
        if last is not None and is_scrap(last):
            scrapped += 1
    return ratio(scrapped, len(by_unit))


def throughput(executions: Iterable[Execution], terminal_step_id: Optional[int]) -> int:
    if terminal_step_id is None:
        return 0
    return len({e.unit_id for e in executions if e.step_id == terminal_step_id and is_pass(e)})


def average_throughput(count: int, window_hours: float) -> float:
    return ratio(count, window_hours)


def line_first_pass_yield(executions: Iterable[Execution], flow: Sequence[StepDefinition]) -> float:
    """
    Share of units that started the flow and passed every nominal step first time.

    Denominator is the units that executed the first nominal step; when none
    did (window cut mid-flow) it falls back to every unit seen.
    """
    if not flow:
        return 0.0
    by_unit = group_by_unit(executions)
    first_id = flow[0].id
    started = [uid for uid, execs in by_unit.items() if any(e.step_id == first_id for e in execs)]
    denominator = started if started else list(by_unit.keys())
    step_ids = [s.id for s in flow]
    passed = sum(1 for uid in denominator if passed_all_steps_first_time(by_unit[uid], step_ids))
    return ratio(passed, len(denominator))


def line_status(line_fpy: float) -> str:
    if line_fpy >= LINE_STATUS_OK:
        return "OK"
    if line_fpy >= LINE_STATUS_WARNING:
        return "WARNING"
    return "CRITICAL"


def compute_population_yield(
    executions: Iterable[Execution],
    steps: Iterable[StepDefinition],
    window_hours: float = 0.0,
) -> PopulationYield:
    execs = list(executions)
    step_list = list(steps)
    if not execs or not step_list:
        return PopulationYield()

    flow = nominal_flow(step_list)
    flow_ids = {s.id for s in flow}
    step_yields = compute_step_yields(execs, step_list)
    end = flow[-1] if flow else None
    tp = throughput(execs, end.id if end else None)
    lfpy = line_first_pass_yield(execs, flow)

    result = PopulationYield(
        step_yields=step_yields,
        rty=rolled_throughput_yield(sy for sy in step_yields if sy.step.id in flow_ids),
        line_fpy=lfpy,
        rework_rate=rework_rate(execs),
        scrap_rate=scrap_rate(execs),
        throughput=tp,
        average_throughput=average_throughput(tp, window_hours),
        units_with_executions=len(group_by_unit(execs)),
        status=line_status(lfpy),
    )
    logger.debug(
        "population yield: units=%d rty=%.4f line_fpy=%.4f rework=%.4f scrap=%.4f",
        result.units_with_executions, result.rty, result.line_fpy, result.rework_rate, result.scrap_rate,
    )
    return result
