# linesight/services/ordering.py
"""
Time ordering of step executions.

Storage order means nothing: every place that needs "earliest", "latest" or
"consecutive" derives it from `effective_timestamp`, i.e.
completed_at, else started_at, else the Unix epoch. Sorting is stable, so
records with equal keys keep their arrival order.
"""
from __future__ import annotations

from collections import defaultdict
from datetime import datetime, timezone
from typing import Dict, Iterable, List, Optional

from linesight.domain import Execution

EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)


def as_utc(ts: Optional[datetime]) -> Optional[datetime]:
    """Aware UTC datetime; naive values from the store are taken as UTC."""
    if ts is None:
        return None
    if ts.tzinfo is None or ts.tzinfo.utcoffset(ts) is None:
        return ts.replace(tzinfo=timezone.utc)
    return ts.astimezone(timezone.utc)


def effective_timestamp(execution: Execution) -> datetime:
    ts = execution.completed_at if execution.completed_at is not None else execution.started_at
    return as_utc(ts) or EPOCH


def sort_executions(executions: Iterable[Execution]) -> List[Execution]:
    return sorted(executions, key=effective_timestamp)


def latest(executions: Iterable[Execution]) -> Optional[Execution]:
    ordered = sort_executions(executions)
    return ordered[-1] if ordered else None


def latest_timestamp(executions: Iterable[Execution]) -> Optional[datetime]:
    """Anchor for replayable windows: the newest effective timestamp seen."""
    newest: Optional[datetime] = None
    for e in executions:
        ts = effective_timestamp(e)
        if newest is None or ts > newest:
            newest = ts
    return newest


def group_by_unit(executions: Iterable[Execution]) -> Dict[int, List[Execution]]:
    groups: Dict[int, List[Execution]] = defaultdict(list)
    for e in executions:
        groups[e.unit_id].append(e)
    return dict(groups)


def group_by_step(executions: Iterable[Execution]) -> Dict[int, List[Execution]]:
    groups: Dict[int, List[Execution]] = defaultdict(list)
    for e in executions:
        groups[e.step_id].append(e)
    return dict(groups)
