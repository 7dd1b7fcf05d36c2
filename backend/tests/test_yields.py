# tests/test_yields.py
import random
from datetime import timedelta

import pytest

from linesight.services.yields import (
    StepStats,
    StepYield,
    compute_population_yield,
    compute_step_stats,
    line_first_pass_yield,
    line_status,
    nominal_flow,
    rework_rate,
    rolled_throughput_yield,
    scrap_rate,
    terminal_step,
    throughput,
)

from conftest import ASSY, DEBUG, FQC, KIT, LEAK, T0, execution, line_steps, step, walk


def _leak_population(units: int, first_pass: int):
    execs = []
    for uid in range(1, units + 1):
        at = T0 + timedelta(minutes=uid)
        if uid <= first_pass:
            execs.append(execution(uid, LEAK, "PASS", at=at))
        else:
            execs.append(execution(uid, LEAK, "FAIL", at=at, loop=f"R-{uid}"))
            execs.append(execution(uid, LEAK, "PASS", at=at + timedelta(minutes=30), loop=f"R-{uid}"))
    return execs


def _mixed_line():
    m = timedelta(minutes=10)
    unit2 = [
        execution(2, KIT, at=T0),
        execution(2, ASSY, at=T0 + m),
        execution(2, LEAK, "FAIL", at=T0 + 2 * m, loop="R-2"),
        execution(2, DEBUG, at=T0 + 3 * m, loop="R-2"),
        execution(2, LEAK, at=T0 + 4 * m, loop="R-2"),
        execution(2, FQC, at=T0 + 5 * m),
    ]
    return (
        walk(1, T0)
        + unit2
        + walk(3, T0 + timedelta(seconds=7), {LEAK: "SCRAP"}, step_ids=(KIT, ASSY, LEAK))
        + walk(4, T0 + timedelta(seconds=13), step_ids=(ASSY, LEAK, FQC))
    )


# ----------------- Step level -----------------

def test_ninety_five_of_hundred_first_pass():
    stats = compute_step_stats(_leak_population(100, 95))
    assert stats.units_reached == 100
    assert stats.first_pass_units == 95
    assert stats.fpy == pytest.approx(0.95)
    assert stats.rework_rate == pytest.approx(0.05)
    assert stats.execution_yield == pytest.approx(100 / 105)


def test_fpy_bounds():
    assert compute_step_stats(_leak_population(10, 0)).fpy == 0.0
    assert compute_step_stats(_leak_population(10, 10)).fpy == 1.0
    assert compute_step_stats([]).fpy == 0.0


@pytest.mark.parametrize("first_pass", [0, 1, 7, 20])
def test_fpy_stays_in_unit_interval(first_pass):
    fpy = compute_step_stats(_leak_population(20, first_pass)).fpy
    assert 0.0 <= fpy <= 1.0


# ----------------- RTY -----------------

def _yield(step_id: int, reached: int, first_pass: int) -> StepYield:
    return StepYield(step=step(step_id, f"S{step_id}", step_id), stats=StepStats(reached, first_pass))


def test_rty_skips_unreached_steps():
    yields = [
        _yield(1, 100, 98),
        _yield(2, 100, 95),
        _yield(3, 0, 0),
        _yield(4, 100, 99),
    ]
    assert rolled_throughput_yield(yields) == pytest.approx(0.98 * 0.95 * 0.99)


def test_rty_with_nothing_reached_is_zero():
    assert rolled_throughput_yield([_yield(1, 0, 0), _yield(2, 0, 0)]) == 0.0
    assert rolled_throughput_yield([]) == 0.0


def test_rty_non_increasing_as_one_fpy_drops():
    previous = None
    for first_pass in range(100, -1, -5):
        rty = rolled_throughput_yield([_yield(1, 100, 97), _yield(2, 100, first_pass), _yield(3, 50, 49)])
        if previous is not None:
            assert rty <= previous
        previous = rty


# ----------------- Population -----------------

def test_rework_and_scrap_rates_ignore_input_order():
    execs = _mixed_line()
    expected = (rework_rate(execs), scrap_rate(execs))
    rng = random.Random(7)
    for _ in range(10):
        shuffled = execs[:]
        rng.shuffle(shuffled)
        assert (rework_rate(shuffled), scrap_rate(shuffled)) == expected


def test_population_rates():
    execs = _mixed_line()
    assert rework_rate(execs) == pytest.approx(0.25)
    assert scrap_rate(execs) == pytest.approx(0.25)
    assert rework_rate([]) == 0.0
    assert scrap_rate([]) == 0.0


def test_repeat_without_loop_counts_as_rework():
    execs = [execution(1, ASSY, at=T0), execution(1, ASSY, at=T0 + timedelta(minutes=1)), execution(2, ASSY)]
    assert rework_rate(execs) == pytest.approx(0.5)


def test_flow_excludes_debug_and_orders_by_sequence():
    flow = nominal_flow(reversed(line_steps()))
    assert [s.id for s in flow] == [KIT, ASSY, LEAK, FQC]
    assert terminal_step(line_steps()).id == FQC
    assert terminal_step([]) is None


def test_throughput_counts_distinct_terminal_passes():
    execs = _mixed_line() + [execution(1, FQC, at=T0 + timedelta(hours=2))]
    assert throughput(execs, FQC) == 3
    assert throughput(execs, None) == 0


def test_line_fpy_uses_units_that_started_the_flow():
    flow = nominal_flow(line_steps())
    # units 1-3 started at kitting; only unit 1 went through clean
    assert line_first_pass_yield(_mixed_line(), flow) == pytest.approx(1 / 3)


def test_line_fpy_falls_back_to_all_units_when_none_started():
    flow = nominal_flow(line_steps())
    execs = walk(7, T0, step_ids=(ASSY, LEAK, FQC)) + walk(8, T0, {LEAK: "FAIL"}, step_ids=(ASSY, LEAK, FQC))
    # neither unit kitted, so neither can pass every nominal step
    assert line_first_pass_yield(execs, flow) == 0.0


@pytest.mark.parametrize(
    "value,status",
    [(1.0, "OK"), (0.98, "OK"), (0.9799, "WARNING"), (0.95, "WARNING"), (0.9499, "CRITICAL"), (0.0, "CRITICAL")],
)
def test_line_status_bands(value, status):
    assert line_status(value) == status


def test_population_yield_bundle():
    result = compute_population_yield(_mixed_line(), line_steps(), window_hours=24)
    assert result.units_with_executions == 4
    assert result.throughput == 3
    assert result.average_throughput == pytest.approx(3 / 24)
    assert result.rty == pytest.approx(0.5)
    assert result.line_fpy == pytest.approx(1 / 3)
    assert result.status == "CRITICAL"
    by_id = {sy.step.id: sy for sy in result.step_yields}
    assert by_id[LEAK].stats.units_reached == 4
    assert by_id[LEAK].fpy == pytest.approx(0.5)
    assert by_id[DEBUG].stats.units_reached == 1


def test_population_yield_empty():
    result = compute_population_yield([], line_steps())
    assert result.rty == 0.0
    assert result.throughput == 0
    assert result.step_yields == []
