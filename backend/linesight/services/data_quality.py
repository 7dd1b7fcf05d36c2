# linesight/services/data_quality.py
"""
Ingestion health over the trailing 24h (anchored at the newest execution).

Nothing here changes any metric; it only reports the anomalies the metric
code tolerates: missing coverage, duplicated or colliding records, clocks
running backwards, repeats outside loops, missing critical CTQs, unknown CTQ
directions and measurement latency.
"""
from __future__ import annotations

import logging
import math
from collections import Counter
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Dict, Iterable, List, Optional, Set

from linesight.domain import CtqDefinition, Execution, Measurement, StepDefinition, Unit
from linesight.services.ctq_spec import normalize_direction
from linesight.services.first_pass import resolve_first_pass
from linesight.services.ordering import as_utc, effective_timestamp, group_by_step, group_by_unit, sort_executions
from linesight.services.reader import normalize_serial
from linesight.services.yields import nominal_flow, ratio

logger = logging.getLogger(__name__)

WINDOW_HOURS = 24
COVERAGE_OK = 0.98
DUPLICATE_FACTOR = 3
DUPLICATE_LIMIT = 5
OUT_OF_ORDER_UNITS = 200
SAMPLE_SERIALS = 5
MISSING_CTQ_WARN = 0.02
P95 = 0.95

STATUS_OK = "OK"
STATUS_WARN = "WARN"


@dataclass(frozen=True)
class CoverageRow:
    step: StepDefinition
    expected_units: int
    actual_units: int
    coverage: float
    status: str


@dataclass(frozen=True)
class DuplicateRow:
    unit_id: int
    serial: str
    execution_count: int


@dataclass(frozen=True)
class SerialCollision:
    serial: str
    unit_ids: List[int]


@dataclass(frozen=True)
class OutOfOrder:
    units_checked: int = 0
    units_with_issues: int = 0
    sample_serials: List[str] = field(default_factory=list)


@dataclass(frozen=True)
class UnloopedRepeats:
    pairs: int = 0
    sample_serials: List[str] = field(default_factory=list)


@dataclass(frozen=True)
class MissingCtqRow:
    ctq: CtqDefinition
    step_name: str
    expected: int
    measured: int
    missing: int
    missing_rate: float
    status: str


@dataclass(frozen=True)
class Latency:
    sample_size: int
    avg_minutes: float
    p95_minutes: float


@dataclass(frozen=True)
class DataQualitySnapshot:
    window_from: Optional[datetime] = None
    window_to: Optional[datetime] = None
    coverage: List[CoverageRow] = field(default_factory=list)
    duplicates: List[DuplicateRow] = field(default_factory=list)
    serial_collisions: List[SerialCollision] = field(default_factory=list)
    out_of_order: OutOfOrder = field(default_factory=OutOfOrder)
    unlooped_repeats: UnloopedRepeats = field(default_factory=UnloopedRepeats)
    missing_ctqs: List[MissingCtqRow] = field(default_factory=list)
    unknown_directions: List[str] = field(default_factory=list)
    latency: Optional[Latency] = None


# ---------- Checks ----------

def coverage(steps: List[StepDefinition], units: List[Unit], executions: List[Execution]) -> List[CoverageRow]:
    unit_ids = {u.id for u in units}
    by_step = group_by_step(executions)
    rows = []
    for s in sorted(steps, key=lambda s: (s.sequence, s.id)):
        actual = len({e.unit_id for e in by_step.get(s.id, []) if e.unit_id in unit_ids})
        cov = ratio(actual, len(unit_ids)) if unit_ids else 1.0
        rows.append(
            CoverageRow(
                step=s,
                expected_units=len(unit_ids),
                actual_units=actual,
                coverage=cov,
                status=STATUS_OK if cov >= COVERAGE_OK else STATUS_WARN,
            )
        )
    return rows


def duplicates(executions: List[Execution], step_count: int, serials: Dict[int, str]) -> List[DuplicateRow]:
    counts = Counter(e.unit_id for e in executions)
    flagged = [(uid, n) for uid, n in counts.items() if n > step_count * DUPLICATE_FACTOR]
    flagged.sort(key=lambda row: (-row[1], row[0]))
    return [
        DuplicateRow(unit_id=uid, serial=serials.get(uid, f"Unit {uid}"), execution_count=n)
        for uid, n in flagged[:DUPLICATE_LIMIT]
    ]


def serial_collisions(units: Iterable[Unit]) -> List[SerialCollision]:
    by_serial: Dict[str, List[int]] = {}
    for u in units:
        by_serial.setdefault(normalize_serial(u.serial), []).append(u.id)
    return [
        SerialCollision(serial=s, unit_ids=sorted(ids))
        for s, ids in sorted(by_serial.items())
        if len(ids) > 1
    ]


def out_of_order(units: List[Unit], executions: List[Execution], steps: List[StepDefinition]) -> OutOfOrder:
    """Earliest-per-step timestamps must not decrease along the nominal sequence."""
    flow = nominal_flow(steps)
    by_unit = group_by_unit(executions)
    checked = 0
    serials: List[str] = []
    for unit in units[:OUT_OF_ORDER_UNITS]:
        execs = by_unit.get(unit.id)
        if not execs:
            continue
        checked += 1
        earliest: Dict[int, datetime] = {}
        for e in sort_executions(execs):
            earliest.setdefault(e.step_id, effective_timestamp(e))
        stamps = [earliest[s.id] for s in flow if s.id in earliest]
        if any(b < a for a, b in zip(stamps, stamps[1:])):
            serials.append(unit.serial)
    return OutOfOrder(units_checked=checked, units_with_issues=len(serials), sample_serials=serials[:SAMPLE_SERIALS])


def unlooped_repeats(executions: List[Execution], serials: Dict[int, str]) -> UnloopedRepeats:
    pairs = 0
    flagged: List[str] = []
    for uid, execs in group_by_unit(executions).items():
        hit = False
        for step_execs in group_by_step(execs).values():
            if resolve_first_pass(step_execs).has_unlooped_repeats:
                pairs += 1
                hit = True
        if hit:
            flagged.append(serials.get(uid, f"Unit {uid}"))
    return UnloopedRepeats(pairs=pairs, sample_serials=sorted(flagged)[:SAMPLE_SERIALS])


def missing_ctqs(
    critical: List[CtqDefinition],
    steps: List[StepDefinition],
    executions: List[Execution],
    measurements: List[Measurement],
) -> List[MissingCtqRow]:
    names = {s.id: s.name for s in steps}
    by_step = group_by_step(executions)
    measured_pairs: Set = {(m.ctq_id, m.execution_id) for m in measurements}
    rows = []
    for ctq in critical:
        step_execs = by_step.get(ctq.step_id, []) if ctq.step_id is not None else []
        expected = len(step_execs)
        measured = sum(1 for e in step_execs if (ctq.id, e.id) in measured_pairs)
        missing = max(0, expected - measured)
        rate = ratio(missing, expected)
        rows.append(
            MissingCtqRow(
                ctq=ctq,
                step_name=names.get(ctq.step_id, ""),
                expected=expected,
                measured=measured,
                missing=missing,
                missing_rate=rate,
                status=STATUS_WARN if rate > MISSING_CTQ_WARN else STATUS_OK,
            )
        )
    rows.sort(key=lambda r: (-r.missing_rate, r.ctq.id))
    return rows


def unknown_directions(ctqs: Iterable[CtqDefinition]) -> List[str]:
    return sorted(c.code for c in ctqs if normalize_direction(c.direction) is None)


def latency(executions: List[Execution], measurements: List[Measurement]) -> Optional[Latency]:
    by_id = {e.id: e for e in executions}
    minutes: List[float] = []
    for m in measurements:
        e = by_id.get(m.execution_id)
        if e is None or m.recorded_at is None:
            continue
        delta = (as_utc(m.recorded_at) - effective_timestamp(e)).total_seconds() / 60.0
        minutes.append(max(0.0, delta))
    if not minutes:
        return None
    minutes.sort()
    idx = min(len(minutes) - 1, int(math.floor(len(minutes) * P95)))
    return Latency(sample_size=len(minutes), avg_minutes=sum(minutes) / len(minutes), p95_minutes=minutes[idx])


# ---------- Service ----------

class DataQualityService:
    def __init__(self, reader) -> None:
        self.reader = reader

    def snapshot(self) -> DataQualitySnapshot:
        anchor = as_utc(self.reader.fetch_latest_execution_time())
        if anchor is None:
            return DataQualitySnapshot()
        since = anchor - timedelta(hours=WINDOW_HOURS)

        steps = self.reader.fetch_steps()
        ctqs = self.reader.fetch_ctqs()
        units = self.reader.fetch_units(created_since=since, created_until=anchor)
        executions = self.reader.fetch_executions(since=since, until=anchor)
        measurements = (
            self.reader.fetch_measurements(execution_ids=[e.id for e in executions]) if executions else []
        )
        window_serials = {u.id: u.serial for u in units}
        involved = {e.unit_id for e in executions} - set(window_serials)
        others = self.reader.fetch_units(unit_ids=list(involved)) if involved else []
        serials = dict(window_serials)
        serials.update({u.id: u.serial for u in others})

        snap = DataQualitySnapshot(
            window_from=since,
            window_to=anchor,
            coverage=coverage(steps, units, executions),
            duplicates=duplicates(executions, len(steps), serials),
            serial_collisions=serial_collisions(self.reader.fetch_units()),
            out_of_order=out_of_order(units, executions, steps),
            unlooped_repeats=unlooped_repeats(executions, serials),
            missing_ctqs=missing_ctqs([c for c in ctqs if c.is_critical], steps, executions, measurements),
            unknown_directions=unknown_directions(ctqs),
            latency=latency(executions, measurements),
        )
        if snap.unknown_directions:
            logger.warning("CTQs with unrecognised direction: %s", ", ".join(snap.unknown_directions))
        if snap.serial_collisions:
            logger.warning("%d serial(s) map to more than one unit", len(snap.serial_collisions))
        return snap
