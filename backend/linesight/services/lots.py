# linesight/services/lots.py
"""
Component-lot health and the lot x CTQ failure heatmap.

Health bands (yield = share of built units whose final result is PASS):

    BAD   yield < 0.90 or scrap > 0.08
    WARN  yield < 0.96 or scrap > 0.03
    GOOD  otherwise
"""
from __future__ import annotations

import logging
from collections import Counter
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Dict, Iterable, List, Optional

from linesight.domain import ComponentLot, CtqDefinition, Episode, Execution, ExecutionResult, Measurement, Unit
from linesight.services.ctq_spec import evaluate_measurement
from linesight.services.episode_payloads import LOT, extract_ids, string_leaves
from linesight.services.first_pass import is_failure
from linesight.services.ordering import as_utc, group_by_unit
from linesight.services.yields import ratio, unit_reworked

logger = logging.getLogger(__name__)

HEALTH_GOOD = "GOOD"
HEALTH_WARN = "WARN"
HEALTH_BAD = "BAD"

BAD_YIELD = 0.90
BAD_SCRAP = 0.08
WARN_YIELD = 0.96
WARN_SCRAP = 0.03

HEATMAP_DEFAULT_DAYS = 30
HEATMAP_MAX_LOTS = 30
HEATMAP_MAX_CTQS = 10


@dataclass(frozen=True)
class LotSummary:
    lot: ComponentLot
    units_built: int
    yield_rate: float
    rework_rate: float
    scrap_rate: float
    correlated_failure_rate: float
    episode_count: int
    health: str


@dataclass(frozen=True)
class LotHeatmap:
    lots: List[ComponentLot] = field(default_factory=list)
    ctqs: List[CtqDefinition] = field(default_factory=list)
    tested: List[List[int]] = field(default_factory=list)
    fails: List[List[int]] = field(default_factory=list)
    matrix: List[List[float]] = field(default_factory=list)
    window_from: Optional[datetime] = None
    window_to: Optional[datetime] = None


def lot_health(yield_rate: float, scrap: float) -> str:
    if yield_rate < BAD_YIELD or scrap > BAD_SCRAP:
        return HEALTH_BAD
    if yield_rate < WARN_YIELD or scrap > WARN_SCRAP:
        return HEALTH_WARN
    return HEALTH_GOOD


def episode_references_lot(episode: Episode, lot: ComponentLot) -> bool:
    if lot.id in extract_ids(episode.affected_lots, LOT):
        return True
    return any(lot.lot_number in s for s in string_leaves(episode.affected_lots))


def summarize_lots(
    lots: Iterable[ComponentLot],
    units: Iterable[Unit],
    executions: Iterable[Execution],
    episodes: Iterable[Episode],
) -> List[LotSummary]:
    units_by_lot: Dict[int, List[Unit]] = {}
    for u in units:
        for lot_id in set(u.lot_ids):
            units_by_lot.setdefault(lot_id, []).append(u)
    execs_by_unit = group_by_unit(executions)
    episode_list = list(episodes)

    out: List[LotSummary] = []
    for lot in lots:
        built = units_by_lot.get(lot.id, [])
        passed = sum(1 for u in built if (u.final_result or "").upper() == ExecutionResult.PASS.value)
        scrapped = sum(1 for u in built if (u.final_result or "").upper() == ExecutionResult.SCRAP.value)
        reworked = sum(1 for u in built if unit_reworked(execs_by_unit.get(u.id, [])))
        lot_execs = [e for u in built for e in execs_by_unit.get(u.id, [])]
        failures = sum(1 for e in lot_execs if is_failure(e))

        yield_rate = ratio(passed, len(built))
        scrap = ratio(scrapped, len(built))
        out.append(
            LotSummary(
                lot=lot,
                units_built=len(built),
                yield_rate=yield_rate,
                rework_rate=ratio(reworked, len(built)),
                scrap_rate=scrap,
                correlated_failure_rate=ratio(failures, len(lot_execs)),
                episode_count=sum(1 for ep in episode_list if episode_references_lot(ep, lot)),
                health=lot_health(yield_rate, scrap),
            )
        )
    out.sort(key=lambda s: (s.yield_rate, s.lot.id))
    return out


def build_lot_heatmap(
    measurements: Iterable[Measurement],
    lot_ids_by_execution: Dict[int, Iterable[int]],
    lots: Iterable[ComponentLot],
    max_lots: int = HEATMAP_MAX_LOTS,
    max_ctqs: int = HEATMAP_MAX_CTQS,
) -> LotHeatmap:
    """Fail-rate grid; rows are the busiest lots, columns the busiest CTQs among them."""
    lots_by_id = {lot.id: lot for lot in lots}
    rows = [m for m in measurements if m.ctq is not None]

    lot_volume: Counter = Counter()
    for m in rows:
        for lot_id in set(lot_ids_by_execution.get(m.execution_id, ())):
            if lot_id in lots_by_id:
                lot_volume[lot_id] += 1
    top_lots = [lid for lid, _ in sorted(lot_volume.items(), key=lambda kv: (-kv[1], kv[0]))[:max_lots]]
    lot_index = {lid: i for i, lid in enumerate(top_lots)}

    in_scope = [m for m in rows if any(lid in lot_index for lid in lot_ids_by_execution.get(m.execution_id, ()))]
    ctq_volume: Counter = Counter(m.ctq_id for m in in_scope)
    top_ctqs = [cid for cid, _ in sorted(ctq_volume.items(), key=lambda kv: (-kv[1], kv[0]))[:max_ctqs]]
    ctq_index = {cid: i for i, cid in enumerate(top_ctqs)}
    ctq_defs: Dict[int, CtqDefinition] = {m.ctq_id: m.ctq for m in in_scope if m.ctq_id in ctq_index}

    tested = [[0] * len(top_ctqs) for _ in top_lots]
    fails = [[0] * len(top_ctqs) for _ in top_lots]
    for m in in_scope:
        ci = ctq_index.get(m.ctq_id)
        if ci is None:
            continue
        out_of_spec = not evaluate_measurement(m.value, m.ctq).in_spec
        for lot_id in set(lot_ids_by_execution.get(m.execution_id, ())):
            li = lot_index.get(lot_id)
            if li is None:
                continue
            tested[li][ci] += 1
            if out_of_spec:
                fails[li][ci] += 1

    matrix = [[ratio(f, t) for f, t in zip(frow, trow)] for frow, trow in zip(fails, tested)]
    return LotHeatmap(
        lots=[lots_by_id[lid] for lid in top_lots],
        ctqs=[ctq_defs[cid] for cid in top_ctqs],
        tested=tested,
        fails=fails,
        matrix=matrix,
    )


class LotService:
    def __init__(self, reader) -> None:
        self.reader = reader

    def summaries(self) -> List[LotSummary]:
        lots = self.reader.fetch_lots()
        if not lots:
            return []
        units = [u for u in self.reader.fetch_units() if u.lot_ids]
        executions = self.reader.fetch_executions(unit_ids=[u.id for u in units]) if units else []
        return summarize_lots(lots, units, executions, self.reader.fetch_episodes())

    def heatmap(self, days: int = HEATMAP_DEFAULT_DAYS) -> LotHeatmap:
        anchor = as_utc(self.reader.fetch_latest_execution_time())
        if anchor is None:
            return LotHeatmap()
        since = anchor - timedelta(days=days)
        measurements = self.reader.fetch_measurements(since=since, until=anchor)
        if not measurements:
            return LotHeatmap(window_from=since, window_to=anchor)

        executions = self.reader.fetch_executions(execution_ids={m.execution_id for m in measurements})
        unit_ids = {e.unit_id for e in executions}
        units = {u.id: u for u in self.reader.fetch_units(unit_ids=list(unit_ids))} if unit_ids else {}
        lot_ids_by_execution = {
            e.id: units[e.unit_id].lot_ids for e in executions if e.unit_id in units
        }
        result = build_lot_heatmap(measurements, lot_ids_by_execution, self.reader.fetch_lots())
        logger.debug("lot heatmap: %d lots x %d ctqs over %d days", len(result.lots), len(result.ctqs), days)
        return LotHeatmap(
            lots=result.lots,
            ctqs=result.ctqs,
            tested=result.tested,
            fails=result.fails,
            matrix=result.matrix,
            window_from=since,
            window_to=anchor,
        )
