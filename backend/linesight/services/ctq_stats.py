# linesight/services/ctq_stats.py
"""
Capability summary for one CTQ.

Window is the trailing `days` ending at the CTQ's newest measurement (or all
history when `days` is None). Control limits are individuals limits,
mean ± 3σ, with σ the sample standard deviation of the window.
"""
from __future__ import annotations

import logging
import math
import statistics
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta
from typing import Callable, Dict, Iterable, List, Optional
from zoneinfo import ZoneInfo

from linesight.domain import CTQDirection, CtqDefinition, Execution, Measurement
from linesight.errors import NotFoundError
from linesight.services.ctq_spec import evaluate_measurement, normalize_direction, normalize_limits
from linesight.services.ordering import EPOCH, as_utc
from linesight.services.yields import ratio

logger = logging.getLogger(__name__)

HISTOGRAM_BINS = 10
HISTOGRAM_MIN_VALUES = 5
BREAKDOWN_LIMIT = 5
UNKNOWN_KEY = "Unknown"


@dataclass(frozen=True)
class HistogramBin:
    lower: float
    upper: float
    count: int


@dataclass(frozen=True)
class DailyPoint:
    day: date
    mean: float
    count: int
    center: float
    ucl: float
    lcl: float


@dataclass(frozen=True)
class Breakdown:
    key: str
    fail: int
    total: int
    fail_rate: float
    fail_share: float


@dataclass(frozen=True)
class CtqSummary:
    ctq: CtqDefinition
    count: int = 0
    mean: Optional[float] = None
    std_dev: Optional[float] = None
    min_value: Optional[float] = None
    max_value: Optional[float] = None
    out_of_spec: int = 0
    out_of_spec_rate: float = 0.0
    cp: Optional[float] = None
    cpk: Optional[float] = None
    window_from: Optional[datetime] = None
    window_to: Optional[datetime] = None
    histogram: List[HistogramBin] = field(default_factory=list)
    daily: List[DailyPoint] = field(default_factory=list)
    worst_lots: List[Breakdown] = field(default_factory=list)
    worst_fixtures: List[Breakdown] = field(default_factory=list)
    worst_stations: List[Breakdown] = field(default_factory=list)


# ---------- Stats helpers ----------

def capability(
    ctq: CtqDefinition,
    mean: Optional[float],
    sigma: Optional[float],
):
    """(Cp, Cpk). Cp needs both limits; Cpk uses whichever sides the direction checks."""
    if mean is None or not sigma:
        return None, None
    lo, hi = normalize_limits(ctq.lower_spec_limit, ctq.upper_spec_limit)
    direction = normalize_direction(ctq.direction)
    if direction == CTQDirection.HIGHER_BETTER:
        hi = None
    elif direction == CTQDirection.LOWER_BETTER:
        lo = None

    cp = (hi - lo) / (6 * sigma) if lo is not None and hi is not None else None
    sides = []
    if hi is not None:
        sides.append((hi - mean) / (3 * sigma))
    if lo is not None:
        sides.append((mean - lo) / (3 * sigma))
    cpk = min(sides) if sides else None
    return (
        round(cp, 4) if cp is not None else None,
        round(cpk, 4) if cpk is not None else None,
    )


def histogram(values: List[float], bins: int = HISTOGRAM_BINS) -> List[HistogramBin]:
    if len(values) < HISTOGRAM_MIN_VALUES:
        return []
    lo, hi = min(values), max(values)
    span = (hi - lo) or 1.0
    counts = [0] * bins
    for v in values:
        counts[min(bins - 1, int(math.floor((v - lo) / span * bins)))] += 1
    width = span / bins
    return [HistogramBin(lower=lo + i * width, upper=lo + (i + 1) * width, count=c) for i, c in enumerate(counts)]


def daily_means(
    measurements: Iterable[Measurement],
    tz: ZoneInfo,
    center: float,
    sigma: float,
) -> List[DailyPoint]:
    by_day: Dict[date, List[float]] = {}
    for m in measurements:
        local = (as_utc(m.recorded_at) or EPOCH).astimezone(tz)
        by_day.setdefault(local.date(), []).append(m.value)
    ucl, lcl = center + 3 * sigma, center - 3 * sigma
    return [
        DailyPoint(day=d, mean=sum(vals) / len(vals), count=len(vals), center=center, ucl=ucl, lcl=lcl)
        for d, vals in sorted(by_day.items())
    ]


def breakdown(
    measurements: Iterable[Measurement],
    ctq: CtqDefinition,
    keys_for: Callable[[Measurement], List[str]],
    limit: int = BREAKDOWN_LIMIT,
) -> List[Breakdown]:
    tallies: Dict[str, List[int]] = {}
    for m in measurements:
        failed = not evaluate_measurement(m.value, ctq).in_spec
        for key in keys_for(m) or [UNKNOWN_KEY]:
            t = tallies.setdefault(key, [0, 0])
            t[1] += 1
            if failed:
                t[0] += 1
    all_fails = sum(t[0] for t in tallies.values())
    rows = [
        Breakdown(key=k, fail=f, total=n, fail_rate=ratio(f, n), fail_share=ratio(f, all_fails))
        for k, (f, n) in tallies.items()
        if n > 0
    ]
    rows.sort(key=lambda b: (-b.fail_rate, -b.fail, b.key))
    return rows[:limit]


def summarize_ctq(
    ctq: CtqDefinition,
    measurements: List[Measurement],
    tz: ZoneInfo,
    executions_by_id: Optional[Dict[int, Execution]] = None,
    lot_numbers_by_unit: Optional[Dict[int, List[str]]] = None,
    window_from: Optional[datetime] = None,
    window_to: Optional[datetime] = None,
) -> CtqSummary:
    if not measurements:
        return CtqSummary(ctq=ctq, window_from=window_from, window_to=window_to)

    executions_by_id = executions_by_id or {}
    lot_numbers_by_unit = lot_numbers_by_unit or {}
    values = [m.value for m in measurements]
    mean = statistics.fmean(values)
    sigma = statistics.stdev(values) if len(values) > 1 else 0.0
    fails = sum(1 for m in measurements if not evaluate_measurement(m.value, ctq).in_spec)
    cp, cpk = capability(ctq, mean, sigma)

    def execution_of(m: Measurement) -> Optional[Execution]:
        return executions_by_id.get(m.execution_id)

    def lots_of(m: Measurement) -> List[str]:
        e = execution_of(m)
        return list(lot_numbers_by_unit.get(e.unit_id, [])) if e is not None else []

    def fixture_of(m: Measurement) -> List[str]:
        e = execution_of(m)
        return [e.fixture_code] if e is not None and e.fixture_code else []

    def station_of(m: Measurement) -> List[str]:
        e = execution_of(m)
        return [e.station_code] if e is not None and e.station_code else []

    return CtqSummary(
        ctq=ctq,
        count=len(values),
        mean=mean,
        std_dev=sigma,
        min_value=min(values),
        max_value=max(values),
        out_of_spec=fails,
        out_of_spec_rate=ratio(fails, len(values)),
        cp=cp,
        cpk=cpk,
        window_from=window_from,
        window_to=window_to,
        histogram=histogram(values),
        daily=daily_means(measurements, tz, mean, sigma) if len(values) >= HISTOGRAM_MIN_VALUES else [],
        worst_lots=breakdown(measurements, ctq, lots_of),
        worst_fixtures=breakdown(measurements, ctq, fixture_of),
        worst_stations=breakdown(measurements, ctq, station_of),
    )


class CtqStatsService:
    def __init__(self, reader) -> None:
        self.reader = reader

    def summary(self, ctq_id: int, days: Optional[int] = 7, tz: str = "UTC") -> CtqSummary:
        zone = ZoneInfo(tz)
        found = self.reader.fetch_ctqs(ctq_ids=[ctq_id])
        if not found:
            raise NotFoundError("ctq", ctq_id)
        ctq = found[0]

        history = self.reader.fetch_measurements(ctq_ids=[ctq_id])
        stamps = [as_utc(m.recorded_at) for m in history if m.recorded_at is not None]
        if not stamps:
            return summarize_ctq(ctq, [], zone)
        anchor = max(stamps)
        since = anchor - timedelta(days=days) if days is not None else None
        window = [m for m in history if since is None or (as_utc(m.recorded_at) or EPOCH) >= since]

        executions = self.reader.fetch_executions(execution_ids={m.execution_id for m in window})
        executions_by_id = {e.id: e for e in executions}
        unit_ids = {e.unit_id for e in executions}
        units = self.reader.fetch_units(unit_ids=list(unit_ids)) if unit_ids else []
        lot_ids = {lid for u in units for lid in u.lot_ids}
        lot_numbers = {lot.id: lot.lot_number for lot in self.reader.fetch_lots(lot_ids=list(lot_ids))} if lot_ids else {}
        lot_numbers_by_unit = {u.id: [lot_numbers[lid] for lid in u.lot_ids if lid in lot_numbers] for u in units}

        logger.debug("ctq %s summary: %d measurements in window", ctq.code, len(window))
        return summarize_ctq(
            ctq,
            window,
            zone,
            executions_by_id=executions_by_id,
            lot_numbers_by_unit=lot_numbers_by_unit,
            window_from=since,
            window_to=anchor,
        )
