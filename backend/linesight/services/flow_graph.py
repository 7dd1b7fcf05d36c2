# linesight/services/flow_graph.py
"""
Step-to-step transition graph (rework Sankey data).

For every unit, consecutive executions in time order contribute one count to
the (source code, target code) edge. An edge is `rework` when either
execution carries a loop id, when it is a self-loop, or when either code names
a rework/debug step; otherwise `forward`. A unit whose last execution is SCRAP
adds one count to `<code> -> SCRAP`.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import timedelta
from typing import Dict, Iterable, List, Optional, Tuple

from linesight.domain import Execution, StepDefinition
from linesight.services.first_pass import is_scrap
from linesight.services.ordering import as_utc, group_by_unit, sort_executions

logger = logging.getLogger(__name__)

SCRAP_NODE = "SCRAP"
UNKNOWN_NODE = "UNKNOWN"

KIND_FORWARD = "forward"
KIND_REWORK = "rework"
KIND_SCRAP = "scrap"

REWORK_MARKERS = ("REWORK", "DEBUG")


@dataclass(frozen=True)
class FlowNode:
    id: str
    label: str


@dataclass(frozen=True)
class FlowEdge:
    source: str
    target: str
    value: int
    kind: str


@dataclass(frozen=True)
class FlowGraph:
    nodes: List[FlowNode] = field(default_factory=list)
    edges: List[FlowEdge] = field(default_factory=list)
    total_units: int = 0
    min_units: int = 0

    @property
    def sufficient(self) -> bool:
        return self.total_units >= self.min_units


def is_rework_code(code: str) -> bool:
    upper = (code or "").upper()
    return any(marker in upper for marker in REWORK_MARKERS)


def _code(execution: Execution, codes_by_id: Dict[int, str]) -> str:
    return execution.step_code or codes_by_id.get(execution.step_id) or UNKNOWN_NODE


def _label(code: str) -> str:
    return code.replace("_", " ").title()


def build_flow_graph(
    executions: Iterable[Execution],
    steps: Optional[Iterable[StepDefinition]] = None,
    *,
    min_units: int = 0,
) -> FlowGraph:
    step_list = sorted(steps or [], key=lambda s: (s.sequence, s.id))
    codes_by_id = {s.id: s.code for s in step_list}
    labels = {s.code: s.name or _label(s.code) for s in step_list}

    counts: Dict[Tuple[str, str], int] = {}
    kinds: Dict[Tuple[str, str], str] = {}
    seen_codes: List[str] = []

    def note(code: str) -> None:
        if code not in seen_codes:
            seen_codes.append(code)

    def bump(key: Tuple[str, str], kind: str) -> None:
        counts[key] = counts.get(key, 0) + 1
        # rework wins over forward regardless of which unit was walked first
        if kinds.get(key) != KIND_REWORK:
            kinds[key] = kind

    by_unit = group_by_unit(executions)
    if not by_unit:
        return FlowGraph(min_units=min_units)
    for unit_execs in by_unit.values():
        ordered = sort_executions(unit_execs)
        for cur, nxt in zip(ordered, ordered[1:]):
            src, tgt = _code(cur, codes_by_id), _code(nxt, codes_by_id)
            note(src)
            note(tgt)
            rework = (
                bool(cur.rework_loop_id)
                or bool(nxt.rework_loop_id)
                or src == tgt
                or is_rework_code(src)
                or is_rework_code(tgt)
            )
            bump((src, tgt), KIND_REWORK if rework else KIND_FORWARD)

        last = ordered[-1]
        note(_code(last, codes_by_id))
        if is_scrap(last):
            bump((_code(last, codes_by_id), SCRAP_NODE), KIND_SCRAP)

    order = [s.code for s in step_list]
    order += [c for c in seen_codes if c not in order]
    node_codes = [c for c in order if c in seen_codes]
    nodes = [FlowNode(id=c, label=labels.get(c, _label(c))) for c in node_codes]
    nodes.append(FlowNode(id=SCRAP_NODE, label="Scrap"))

    rank = {c: i for i, c in enumerate(node_codes + [SCRAP_NODE])}
    edges = [
        FlowEdge(source=src, target=tgt, value=counts[(src, tgt)], kind=kinds[(src, tgt)])
        for (src, tgt) in sorted(counts, key=lambda k: (rank.get(k[0], 0), rank.get(k[1], 0)))
    ]

    graph = FlowGraph(nodes=nodes, edges=edges, total_units=len(by_unit), min_units=min_units)
    if not graph.sufficient:
        logger.warning("Flow graph has %d units, below the %d needed for plotting", graph.total_units, min_units)
    logger.debug("flow graph: %d nodes, %d edges, %d units", len(nodes), len(edges), graph.total_units)
    return graph


class ReworkFlowService:
    """Transition graph over the trailing `range_hours` before the newest execution."""

    def __init__(self, reader) -> None:
        self.reader = reader

    def graph(self, range_hours: int, min_units: int = 0) -> FlowGraph:
        anchor = as_utc(self.reader.fetch_latest_execution_time())
        if anchor is None:
            return FlowGraph(min_units=min_units)
        steps = self.reader.fetch_steps()
        executions = self.reader.fetch_executions(since=anchor - timedelta(hours=range_hours), until=anchor)
        return build_flow_graph(executions, steps, min_units=min_units)
