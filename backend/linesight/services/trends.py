# linesight/services/trends.py
"""
Windowed trend detection: last 24h against the preceding 7-day baseline.

Windows are anchored at the newest execution timestamp, never the wall clock,
so a historical snapshot always reproduces the same scenarios.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Dict, Iterable, List, Optional, Tuple

from linesight.domain import Execution, StepDefinition
from linesight.services.ordering import as_utc, effective_timestamp, latest_timestamp
from linesight.services.yields import StepStats, compute_step_stats

logger = logging.getLogger(__name__)

BASELINE_HOURS = 7 * 24
CURRENT_HOURS = 24
WINDOW_LABEL = "last24h"

# FPY droop
FPY_DROOP_MIN_BASELINE_UNITS = 20
FPY_DROOP_MIN_CURRENT_UNITS = 10
FPY_DROOP_MIN_BASELINE_FPY = 0.95
FPY_DROOP_MIN_DROP = 0.03
FPY_DROOP_CRITICAL_DROP = 0.05
FPY_DROOP_CRITICAL_FPY = 0.90

# Rework spike
REWORK_SPIKE_MIN_BASELINE_UNITS = 20
REWORK_SPIKE_MIN_CURRENT_UNITS = 10
REWORK_SPIKE_RATIO = 1.5
REWORK_SPIKE_MIN_INCREASE = 0.03
REWORK_SPIKE_CRITICAL_RATE = 0.15

# Scrap spike
SCRAP_SPIKE_MIN_BASELINE_UNITS = 10
SCRAP_SPIKE_MIN_CURRENT_UNITS = 5
SCRAP_SPIKE_MAX_BASELINE_RATE = 0.02
SCRAP_SPIKE_MIN_CURRENT_RATE = 0.03
SCRAP_SPIKE_CRITICAL_RATE = 0.05

# Float tolerance for the ">=" comparisons above
EPS = 1e-9

SEVERITY_RANK = {"critical": 3, "warning": 2, "info": 1}


class ScenarioType:
    FPY_DROOP = "STATION_FPY_DROOP"
    REWORK_SPIKE = "STATION_REWORK_SPIKE"
    SCRAP_SPIKE = "STATION_SCRAP_SPIKE"


RECOMMENDED_ACTIONS = {
    ScenarioType.FPY_DROOP: (
        "Compare recent units by lot and fixture; check leak/torque/planarity CTQs and recent process changes."
    ),
    ScenarioType.REWORK_SPIKE: (
        "Check recent failures and rework loops; inspect fixtures and confirm operator/recipe changes."
    ),
    ScenarioType.SCRAP_SPIKE: (
        "Review scrap codes and last executions; correlate with lots/fixtures and station settings."
    ),
}


@dataclass(frozen=True)
class TrendScenario:
    id: str
    type: str
    severity: str
    title: str
    summary: str
    step_id: int
    station_code: str
    station_name: str
    recommended_action: str
    baseline_value: float
    current_value: float
    baseline_units: int
    current_units: int
    window: str = WINDOW_LABEL

    @property
    def delta(self) -> float:
        """Magnitude of the movement this scenario reports."""
        if self.type == ScenarioType.FPY_DROOP:
            return self.baseline_value - self.current_value
        return self.current_value - self.baseline_value


@dataclass(frozen=True)
class TrendReport:
    anchor: Optional[datetime] = None
    baseline_from: Optional[datetime] = None
    current_from: Optional[datetime] = None
    scenarios: List[TrendScenario] = field(default_factory=list)


def _pct(rate: float) -> str:
    return f"{rate * 100:.1f}%"


def split_windows(
    executions: Iterable[Execution],
    anchor: datetime,
    baseline_hours: int = BASELINE_HOURS,
    current_hours: int = CURRENT_HOURS,
) -> Tuple[Dict[int, List[Execution]], Dict[int, List[Execution]]]:
    """Per-step (baseline, current) partitions; executions outside both are dropped."""
    current_from = anchor - timedelta(hours=current_hours)
    baseline_from = anchor - timedelta(hours=baseline_hours)
    baseline: Dict[int, List[Execution]] = {}
    current: Dict[int, List[Execution]] = {}
    for e in executions:
        ts = effective_timestamp(e)
        if ts > anchor:
            continue
        if ts >= current_from:
            current.setdefault(e.step_id, []).append(e)
        elif ts >= baseline_from:
            baseline.setdefault(e.step_id, []).append(e)
    return baseline, current


def _scenario(
    kind: str,
    severity: str,
    step: StepDefinition,
    summary: str,
    title_suffix: str,
    baseline_value: float,
    current_value: float,
    base: StepStats,
    cur: StepStats,
) -> TrendScenario:
    return TrendScenario(
        id=f"{kind}:{step.code}",
        type=kind,
        severity=severity,
        title=f"{step.name} {title_suffix}",
        summary=summary,
        step_id=step.id,
        station_code=step.code,
        station_name=step.name,
        recommended_action=RECOMMENDED_ACTIONS[kind],
        baseline_value=baseline_value,
        current_value=current_value,
        baseline_units=base.units_reached,
        current_units=cur.units_reached,
    )


def fpy_droop(step: StepDefinition, base: StepStats, cur: StepStats) -> Optional[TrendScenario]:
    if base.units_reached < FPY_DROOP_MIN_BASELINE_UNITS or cur.units_reached < FPY_DROOP_MIN_CURRENT_UNITS:
        return None
    drop = base.fpy - cur.fpy
    if base.fpy < FPY_DROOP_MIN_BASELINE_FPY - EPS or drop < FPY_DROOP_MIN_DROP - EPS:
        return None
    critical = drop >= FPY_DROOP_CRITICAL_DROP - EPS or cur.fpy < FPY_DROOP_CRITICAL_FPY
    summary = (
        f"FPY at {step.code} fell from {_pct(base.fpy)} (last 7d) to {_pct(cur.fpy)} (last 24h)."
    )
    return _scenario(
        ScenarioType.FPY_DROOP, "critical" if critical else "warning", step, summary,
        "FPY droop", base.fpy, cur.fpy, base, cur,
    )


def rework_spike(step: StepDefinition, base: StepStats, cur: StepStats) -> Optional[TrendScenario]:
    if base.units_reached < REWORK_SPIKE_MIN_BASELINE_UNITS or cur.units_reached < REWORK_SPIKE_MIN_CURRENT_UNITS:
        return None
    increase = cur.rework_rate - base.rework_rate
    if not cur.rework_rate > base.rework_rate * REWORK_SPIKE_RATIO or increase < REWORK_SPIKE_MIN_INCREASE - EPS:
        return None
    critical = cur.rework_rate >= REWORK_SPIKE_CRITICAL_RATE - EPS
    summary = (
        f"Rework at {step.code} rose from {_pct(base.rework_rate)} to {_pct(cur.rework_rate)} "
        f"comparing last 7d vs last 24h."
    )
    return _scenario(
        ScenarioType.REWORK_SPIKE, "critical" if critical else "warning", step, summary,
        "rework spike", base.rework_rate, cur.rework_rate, base, cur,
    )


def scrap_spike(step: StepDefinition, base: StepStats, cur: StepStats) -> Optional[TrendScenario]:
    if base.units_reached < SCRAP_SPIKE_MIN_BASELINE_UNITS or cur.units_reached < SCRAP_SPIKE_MIN_CURRENT_UNITS:
        return None
    if base.scrap_rate >= SCRAP_SPIKE_MAX_BASELINE_RATE or cur.scrap_rate < SCRAP_SPIKE_MIN_CURRENT_RATE - EPS:
        return None
    critical = cur.scrap_rate >= SCRAP_SPIKE_CRITICAL_RATE - EPS
    summary = (
        f"Scrap at {step.code} increased to {_pct(cur.scrap_rate)} (baseline {_pct(base.scrap_rate)})."
    )
    return _scenario(
        ScenarioType.SCRAP_SPIKE, "critical" if critical else "warning", step, summary,
        "scrap spike", base.scrap_rate, cur.scrap_rate, base, cur,
    )


RULES = (fpy_droop, rework_spike, scrap_spike)


def sort_scenarios(scenarios: Iterable[TrendScenario]) -> List[TrendScenario]:
    return sorted(scenarios, key=lambda s: (-SEVERITY_RANK.get(s.severity, 0), -s.delta))


def detect_trend_scenarios(
    executions: Iterable[Execution],
    steps: Iterable[StepDefinition],
    *,
    anchor: Optional[datetime] = None,
    baseline_hours: int = BASELINE_HOURS,
    current_hours: int = CURRENT_HOURS,
) -> TrendReport:
    execs = list(executions)
    anchor = as_utc(anchor) if anchor is not None else latest_timestamp(execs)
    if anchor is None:
        return TrendReport()

    baseline, current = split_windows(execs, anchor, baseline_hours, current_hours)
    scenarios: List[TrendScenario] = []
    for step in sorted(steps, key=lambda s: (s.sequence, s.id)):
        base = compute_step_stats(baseline.get(step.id, []))
        cur = compute_step_stats(current.get(step.id, []))
        for rule in RULES:
            found = rule(step, base, cur)
            if found is not None:
                scenarios.append(found)

    report = TrendReport(
        anchor=anchor,
        baseline_from=anchor - timedelta(hours=baseline_hours),
        current_from=anchor - timedelta(hours=current_hours),
        scenarios=sort_scenarios(scenarios),
    )
    logger.debug("trend detection at %s: %d scenario(s)", anchor.isoformat(), len(report.scenarios))
    return report


class TrendDetector:
    """Fetch the trailing baseline from a reader, then detect."""

    def __init__(self, reader) -> None:
        self.reader = reader

    def detect(self) -> TrendReport:
        anchor = as_utc(self.reader.fetch_latest_execution_time())
        if anchor is None:
            return TrendReport()
        steps = self.reader.fetch_steps()
        executions = self.reader.fetch_executions(since=anchor - timedelta(hours=BASELINE_HOURS), until=anchor)
        return detect_trend_scenarios(executions, steps, anchor=anchor)
