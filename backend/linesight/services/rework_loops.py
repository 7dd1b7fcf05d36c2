# linesight/services/rework_loops.py
"""
Loop ordinals and positions for one unit's executions (trace display only).
"""
from __future__ import annotations

from collections import OrderedDict
from dataclasses import dataclass
from typing import Dict, Iterable, List

from linesight.domain import Execution
from linesight.services.ordering import sort_executions

POSITION_SINGLE = "single"
POSITION_START = "start"
POSITION_MIDDLE = "middle"
POSITION_END = "end"


@dataclass(frozen=True)
class LoopMarker:
    loop_id: str
    loop_index: int  # 1-based, by first appearance
    position: str


def _position(i: int, size: int) -> str:
    if size == 1:
        return POSITION_SINGLE
    if i == 0:
        return POSITION_START
    if i == size - 1:
        return POSITION_END
    return POSITION_MIDDLE


def track_rework_loops(executions: Iterable[Execution]) -> Dict[int, LoopMarker]:
    """execution_id -> marker. Executions without a loop id are left out."""
    loops: "OrderedDict[str, List[Execution]]" = OrderedDict()
    for e in sort_executions(executions):
        if not e.rework_loop_id:
            continue
        loops.setdefault(e.rework_loop_id, []).append(e)

    markers: Dict[int, LoopMarker] = {}
    for index, (loop_id, members) in enumerate(loops.items(), start=1):
        for i, e in enumerate(members):
            markers[e.id] = LoopMarker(loop_id=loop_id, loop_index=index, position=_position(i, len(members)))
    return markers


def count_rework_loops(executions: Iterable[Execution]) -> int:
    return len({e.rework_loop_id for e in executions if e.rework_loop_id})
