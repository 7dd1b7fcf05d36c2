# linesight/services/stations.py
"""Per-station yield table over a named trailing window."""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from enum import Enum
from typing import Iterable, List, Optional

from linesight.domain import Execution, StepDefinition
from linesight.services.flow_graph import is_rework_code
from linesight.services.ordering import as_utc, group_by_step
from linesight.services.yields import StepStats, compute_step_stats

logger = logging.getLogger(__name__)


class StationWindow(str, Enum):
    LAST_8H = "last8h"
    LAST_24H = "last24h"
    LAST_7D = "last7d"


WINDOW_HOURS = {
    StationWindow.LAST_8H: 8,
    StationWindow.LAST_24H: 24,
    StationWindow.LAST_7D: 7 * 24,
}


@dataclass(frozen=True)
class StationMetric:
    step: StepDefinition
    stats: StepStats
    is_excluded: bool

    @property
    def throughput(self) -> int:
        return self.stats.units_reached


@dataclass(frozen=True)
class StationReport:
    window: StationWindow
    window_from: Optional[datetime] = None
    window_to: Optional[datetime] = None
    stations: List[StationMetric] = field(default_factory=list)
    worst_by_fpy: Optional[StationMetric] = None
    worst_by_rework: Optional[StationMetric] = None


def is_excluded(step: StepDefinition) -> bool:
    """Rework/debug stations sit outside the nominal flow and skew rankings."""
    return step.is_debug or is_rework_code(step.code)


def compute_station_metrics(
    executions: Iterable[Execution],
    steps: Iterable[StepDefinition],
) -> List[StationMetric]:
    by_step = group_by_step(executions)
    return [
        StationMetric(step=s, stats=compute_step_stats(by_step.get(s.id, [])), is_excluded=is_excluded(s))
        for s in sorted(steps, key=lambda s: (s.sequence, s.id))
    ]


def worst_by_fpy(stations: Iterable[StationMetric]) -> Optional[StationMetric]:
    candidates = [s for s in stations if not s.is_excluded and s.stats.units_reached > 0]
    return min(candidates, key=lambda s: s.stats.fpy) if candidates else None


def worst_by_rework(stations: Iterable[StationMetric]) -> Optional[StationMetric]:
    candidates = [s for s in stations if not s.is_excluded and s.stats.units_reached > 0]
    return max(candidates, key=lambda s: s.stats.rework_rate) if candidates else None


class StationMetricsService:
    def __init__(self, reader) -> None:
        self.reader = reader

    def report(self, window: StationWindow = StationWindow.LAST_24H) -> StationReport:
        window = StationWindow(window)
        anchor = as_utc(self.reader.fetch_latest_execution_time())
        if anchor is None:
            return StationReport(window=window)

        since = anchor - timedelta(hours=WINDOW_HOURS[window])
        steps = self.reader.fetch_steps()
        executions = self.reader.fetch_executions(since=since, until=anchor)
        stations = compute_station_metrics(executions, steps) if executions else []
        logger.debug("stations %s: %d executions over %d steps", window.value, len(executions), len(steps))
        return StationReport(
            window=window,
            window_from=since,
            window_to=anchor,
            stations=stations,
            worst_by_fpy=worst_by_fpy(stations),
            worst_by_rework=worst_by_rework(stations),
        )
