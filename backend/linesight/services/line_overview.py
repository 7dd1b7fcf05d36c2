# linesight/services/line_overview.py
"""
Line-level KPIs for a trailing range, plus the same KPIs per time bucket.

Bucket presets set a minimum span so sparklines always have enough points:

    hour   6h span,   1h buckets
    shift  24h span,  6h buckets
    day    72h span,  24h buckets
    week   168h span, 24h buckets
"""
from __future__ import annotations

import logging
import math
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from enum import Enum
from typing import List, Optional

from linesight.domain import Execution, StepDefinition
from linesight.services.ordering import as_utc, effective_timestamp
from linesight.services.yields import PopulationYield, StepYield, compute_population_yield

logger = logging.getLogger(__name__)


class Bucket(str, Enum):
    HOUR = "hour"
    SHIFT = "shift"
    DAY = "day"
    WEEK = "week"


# bucket -> (minimum span hours, bucket width hours)
BUCKET_CONFIG = {
    Bucket.HOUR: (6, 1),
    Bucket.SHIFT: (24, 6),
    Bucket.DAY: (72, 24),
    Bucket.WEEK: (168, 24),
}


@dataclass(frozen=True)
class TimeBucket:
    label: str
    start: datetime
    metrics: PopulationYield


@dataclass(frozen=True)
class LineOverview:
    range_hours: int
    bucket: Bucket
    window_from: Optional[datetime] = None
    window_to: Optional[datetime] = None
    overall: PopulationYield = field(default_factory=PopulationYield)
    buckets: List[TimeBucket] = field(default_factory=list)
    stations: List[StepYield] = field(default_factory=list)


def effective_range_hours(range_hours: int, bucket: Bucket) -> int:
    span, _ = BUCKET_CONFIG[bucket]
    return max(int(range_hours), span)


def bucketize(
    executions: List[Execution],
    steps: List[StepDefinition],
    window_from: datetime,
    range_hours: int,
    bucket_hours: int,
) -> List[TimeBucket]:
    count = max(1, math.ceil(range_hours / bucket_hours))
    width = timedelta(hours=bucket_hours)
    slots: List[List[Execution]] = [[] for _ in range(count)]
    for e in executions:
        offset = (effective_timestamp(e) - window_from) / width
        slots[min(count - 1, max(0, int(math.floor(offset))))].append(e)

    out: List[TimeBucket] = []
    for i, slot in enumerate(slots):
        label = "Now" if i == count - 1 else f"{bucket_hours}h"
        out.append(
            TimeBucket(
                label=label,
                start=window_from + i * width,
                metrics=compute_population_yield(slot, steps, window_hours=bucket_hours),
            )
        )
    return out


def build_line_overview(
    executions: List[Execution],
    steps: List[StepDefinition],
    anchor: datetime,
    range_hours: int,
    bucket: Bucket = Bucket.DAY,
) -> LineOverview:
    bucket = Bucket(bucket)
    hours = effective_range_hours(range_hours, bucket)
    window_from = anchor - timedelta(hours=hours)
    overall = compute_population_yield(executions, steps, window_hours=hours)
    # worst first; unreached steps have no FPY to rank
    stations = sorted(overall.step_yields, key=lambda sy: (sy.stats.units_reached == 0, sy.fpy))
    _, bucket_hours = BUCKET_CONFIG[bucket]
    return LineOverview(
        range_hours=hours,
        bucket=bucket,
        window_from=window_from,
        window_to=anchor,
        overall=overall,
        buckets=bucketize(executions, steps, window_from, hours, bucket_hours) if executions else [],
        stations=stations,
    )


class LineOverviewService:
    def __init__(self, reader) -> None:
        self.reader = reader

    def overview(self, range_hours: int = 24, bucket: Bucket = Bucket.DAY) -> LineOverview:
        bucket = Bucket(bucket)
        hours = effective_range_hours(range_hours, bucket)
        anchor = as_utc(self.reader.fetch_latest_execution_time())
        if anchor is None:
            return LineOverview(range_hours=hours, bucket=bucket)

        steps = self.reader.fetch_steps()
        executions = self.reader.fetch_executions(since=anchor - timedelta(hours=hours), until=anchor)
        logger.debug("line overview: %d executions over %dh (%s buckets)", len(executions), hours, bucket.value)
        return build_line_overview(executions, steps, anchor, range_hours, bucket)
