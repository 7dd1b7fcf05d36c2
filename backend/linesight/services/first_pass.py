# linesight/services/first_pass.py
"""
First-pass resolution for one (unit, step) pair.

The earliest execution (by effective timestamp) is the "reached" record. The
unit passed first time iff that record is PASS and carries no rework-loop id;
later attempts never change the answer. Executions with no timestamps at all
sort at the epoch in arrival order, which is a known, accepted limitation.
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, Iterable, List, Optional

from linesight.domain import Execution, ExecutionResult, enum_value
from linesight.services.ordering import group_by_step, group_by_unit, sort_executions


@dataclass(frozen=True)
class FirstPassOutcome:
    reached: bool
    first_pass: bool
    attempts: int = 0
    reworked: bool = False
    scrapped: bool = False
    has_unlooped_repeats: bool = False
    earliest: Optional[Execution] = None
    latest: Optional[Execution] = None


NOT_REACHED = FirstPassOutcome(reached=False, first_pass=False)


def is_pass(execution: Execution) -> bool:
    return enum_value(execution.result) == ExecutionResult.PASS.value


def is_scrap(execution: Execution) -> bool:
    return enum_value(execution.result) == ExecutionResult.SCRAP.value


def is_failure(execution: Execution) -> bool:
    return enum_value(execution.result) in (ExecutionResult.FAIL.value, ExecutionResult.SCRAP.value)


def resolve_first_pass(executions: Iterable[Execution]) -> FirstPassOutcome:
    """Classify every execution of a single unit at a single step."""
    ordered = sort_executions(executions)
    if not ordered:
        return NOT_REACHED

    first = ordered[0]
    last = ordered[-1]
    looped = [e for e in ordered if e.rework_loop_id]
    return FirstPassOutcome(
        reached=True,
        first_pass=is_pass(first) and not first.rework_loop_id,
        attempts=len(ordered),
        reworked=len(ordered) > 1 or bool(looped),
        scrapped=is_scrap(last),
        # Repeats outside any loop are a data-quality smell, not an error.
        has_unlooped_repeats=len(ordered) - len(looped) > 1,
        earliest=first,
        latest=last,
    )


def resolve_step(executions: Iterable[Execution]) -> Dict[int, FirstPassOutcome]:
    """unit_id -> outcome, for executions that all belong to one step."""
    return {unit_id: resolve_first_pass(execs) for unit_id, execs in group_by_unit(executions).items()}


def resolve_unit(executions: Iterable[Execution]) -> Dict[int, FirstPassOutcome]:
    """step_id -> outcome, for executions that all belong to one unit."""
    return {step_id: resolve_first_pass(execs) for step_id, execs in group_by_step(executions).items()}


def passed_all_steps_first_time(executions: List[Execution], step_ids: Iterable[int]) -> bool:
    """True iff the unit reached every given step and passed each first time."""
    outcomes = resolve_unit(executions)
    for step_id in step_ids:
        outcome = outcomes.get(step_id, NOT_REACHED)
        if not outcome.first_pass:
            return False
    return True
