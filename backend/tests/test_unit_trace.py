# tests/test_unit_trace.py
import logging
from datetime import timedelta

import pytest

from linesight.domain import ComponentLot, Unit
from linesight.errors import NotFoundError
from linesight.services.ctq_spec import ABOVE_UPPER, SpecVerdict
from linesight.services.rework_loops import POSITION_END, POSITION_START
from linesight.services.unit_trace import CtqReading, UnitTraceService, effective_result

from conftest import ASSY, FQC, KIT, LEAK, T0, FakeQualityReader, ctq, episode, execution, line_steps, measurement

LEAK_RATE = ctq(5, "LEAK_RATE", LEAK, lsl=3.75, usl=4.2, critical=True)


def _unit_reader(extra_units=(), episodes=()):
    m = timedelta(minutes=10)
    execs = [
        execution(1, KIT, at=T0),
        execution(1, ASSY, at=T0 + m),
        execution(1, LEAK, "FAIL", at=T0 + 2 * m, loop="R-1", failure_code="LEAK_FAIL"),
        execution(1, LEAK, "PASS", at=T0 + 3 * m, loop="R-1"),
        execution(1, FQC, at=T0 + 4 * m),
    ]
    readings = [measurement(execs[2].id, LEAK_RATE, 4.6), measurement(execs[3].id, LEAK_RATE, 4.25)]
    unit = Unit(id=1, serial="LS-0001", created_at=T0 - timedelta(days=1), lot_ids=(21, 20))
    lots = [ComponentLot(id=20, lot_number="L-20"), ComponentLot(id=21, lot_number="L-21"), ComponentLot(id=22, lot_number="L-22")]
    reader = FakeQualityReader(
        steps=line_steps(),
        ctqs=[LEAK_RATE],
        executions=execs,
        measurements=readings,
        units=[unit, *extra_units],
        lots=lots,
        episodes=episodes,
    )
    return reader, execs


def test_trace_orders_and_marks_loops():
    reader, execs = _unit_reader()
    trace = UnitTraceService(reader).trace("LS-0001")

    assert [s.execution.id for s in trace.steps] == [e.id for e in execs]
    assert trace.steps[2].loop.position == POSITION_START
    assert trace.steps[3].loop.position == POSITION_END
    assert trace.steps[0].loop is None
    assert trace.rework_loop_count == 1
    assert trace.final_result == "PASS"
    assert [lot.id for lot in trace.lots] == [21, 20]
    assert trace.steps[3].step.code == "LEAK_TEST"


def test_out_of_spec_reading_downgrades_pass():
    reader, _ = _unit_reader()
    retest = UnitTraceService(reader).trace("LS-0001").steps[3]
    assert retest.execution.result == "PASS"
    assert retest.effective_result == "FAIL"
    assert retest.ctqs[0].verdict.violation == ABOVE_UPPER


def test_scrap_is_never_softened():
    bad = [CtqReading(measurement=None, ctq=None, verdict=SpecVerdict(in_spec=False))]
    assert effective_result(execution(1, LEAK, "SCRAP"), bad) == "SCRAP"
    assert effective_result(execution(1, LEAK, "pass"), []) == "PASS"


def test_serial_is_normalized():
    reader, _ = _unit_reader()
    assert UnitTraceService(reader).trace("  ls-0001 ").unit.id == 1


def test_serial_collision_uses_newest_unit(caplog):
    dup = Unit(id=2, serial="ls-0001", created_at=T0 + timedelta(days=1))
    reader, _ = _unit_reader(extra_units=[dup])
    with caplog.at_level(logging.WARNING, logger="linesight.services.unit_trace"):
        trace = UnitTraceService(reader).trace("LS-0001")
    assert trace.unit.id == 2
    assert trace.steps == []
    assert trace.final_result is None
    assert "maps to 2 units" in caplog.text


@pytest.mark.parametrize("serial", ["LS-9999", "", "   "])
def test_unknown_serial(serial):
    reader, _ = _unit_reader()
    with pytest.raises(NotFoundError):
        UnitTraceService(reader).trace(serial)


def test_closest_episodes_top_three():
    episodes = [
        episode(1, affected_steps=[LEAK]),
        episode(2, affected_ctqs=[5]),
        episode(3, affected_lots=[21]),
        episode(4, affected_steps=[99]),
        episode(5, before_metrics=["leak_fail"]),
    ]
    reader, _ = _unit_reader(episodes=episodes)
    trace = UnitTraceService(reader).trace("LS-0001")
    assert [m.episode.id for m in trace.episodes] == [2, 1, 3]
