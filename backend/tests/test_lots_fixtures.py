# tests/test_lots_fixtures.py
from datetime import timedelta

import pytest

from linesight.domain import ComponentLot, Fixture, Unit
from linesight.services.fixtures import FixtureService, calibration_overdue, fixture_health
from linesight.services.lots import LotService, build_lot_heatmap, lot_health

from conftest import ASSY, LEAK, T0, FakeQualityReader, ctq, episode, execution, line_steps, measurement

LOTS = [ComponentLot(id=20, lot_number="L-20"), ComponentLot(id=21, lot_number="L-21")]
LEAK_RATE = ctq(5, "LEAK_RATE", LEAK, lsl=3.75, usl=4.2)
TORQUE = ctq(6, "TORQUE", ASSY, lsl=1.0, usl=2.0)


# ----------------- Lots -----------------

@pytest.mark.parametrize(
    "yield_rate,scrap,health",
    [(0.99, 0.0, "GOOD"), (0.96, 0.03, "GOOD"), (0.95, 0.0, "WARN"), (0.99, 0.04, "WARN"), (0.89, 0.0, "BAD"), (0.99, 0.09, "BAD")],
)
def test_lot_health_bands(yield_rate, scrap, health):
    assert lot_health(yield_rate, scrap) == health


def _lot_units():
    good = [Unit(id=i, serial=f"A{i}", final_result="PASS", lot_ids=(20,)) for i in range(1, 11)]
    mixed = [Unit(id=i, serial=f"B{i}", final_result="PASS", lot_ids=(21,)) for i in range(11, 19)]
    mixed += [
        Unit(id=19, serial="B19", final_result="SCRAP", lot_ids=(21,)),
        Unit(id=20, serial="B20", final_result="FAIL", lot_ids=(21,)),
    ]
    return good + mixed


def test_lot_summaries():
    execs = [
        execution(11, LEAK, "FAIL", at=T0, loop="R-1"),
        execution(11, LEAK, "PASS", at=T0 + timedelta(minutes=20), loop="R-1"),
        execution(12, LEAK, at=T0),
    ]
    episodes = [
        episode(1, affected_lots=[21]),
        episode(2, affected_lots={"notes": ["supplier batch L-21 out of tolerance"]}),
        episode(3, affected_lots=[20]),
        episode(4),
    ]
    reader = FakeQualityReader(units=_lot_units(), lots=LOTS, executions=execs, episodes=episodes)
    summaries = LotService(reader).summaries()

    assert [s.lot.id for s in summaries] == [21, 20]
    worst, best = summaries
    assert worst.units_built == 10
    assert worst.yield_rate == pytest.approx(0.8)
    assert worst.scrap_rate == pytest.approx(0.1)
    assert worst.rework_rate == pytest.approx(0.1)
    assert worst.correlated_failure_rate == pytest.approx(1 / 3)
    assert worst.episode_count == 2
    assert worst.health == "BAD"
    assert best.health == "GOOD"
    assert best.episode_count == 1


def test_unused_lot_has_no_units():
    reader = FakeQualityReader(lots=[ComponentLot(id=22, lot_number="L-22")])
    (summary,) = LotService(reader).summaries()
    assert summary.units_built == 0
    assert LotService(FakeQualityReader()).summaries() == []


def _heatmap_data():
    execs = [execution(1, LEAK), execution(2, LEAK), execution(3, LEAK), execution(1, ASSY)]
    readings = [
        measurement(execs[0].id, LEAK_RATE, 4.0),
        measurement(execs[1].id, LEAK_RATE, 4.5),
        measurement(execs[2].id, LEAK_RATE, 4.6),
        measurement(execs[3].id, TORQUE, 1.5),
    ]
    units = [
        Unit(id=1, serial="U1", lot_ids=(20,)),
        Unit(id=2, serial="U2", lot_ids=(21,)),
        Unit(id=3, serial="U3", lot_ids=(20, 21)),
    ]
    return execs, readings, units


def test_heatmap_grid():
    execs, readings, units = _heatmap_data()
    lots_of = {u.id: u.lot_ids for u in units}
    heatmap = build_lot_heatmap(readings, {e.id: lots_of[e.unit_id] for e in execs}, LOTS)

    assert [lot.id for lot in heatmap.lots] == [20, 21]
    assert [c.id for c in heatmap.ctqs] == [5, 6]
    assert heatmap.tested == [[2, 1], [2, 0]]
    assert heatmap.fails == [[1, 0], [2, 0]]
    assert heatmap.matrix == [[0.5, 0.0], [1.0, 0.0]]


def test_heatmap_caps_rows():
    execs, readings, units = _heatmap_data()
    lots_of = {u.id: u.lot_ids for u in units}
    heatmap = build_lot_heatmap(readings, {e.id: lots_of[e.unit_id] for e in execs}, LOTS, max_lots=1)
    assert [lot.id for lot in heatmap.lots] == [20]


def test_heatmap_service_window():
    execs, readings, units = _heatmap_data()
    reader = FakeQualityReader(
        steps=line_steps(), ctqs=[LEAK_RATE, TORQUE], executions=execs, measurements=readings, units=units, lots=LOTS
    )
    heatmap = LotService(reader).heatmap(days=7)
    assert heatmap.window_to == T0
    assert heatmap.window_from == T0 - timedelta(days=7)
    assert heatmap.fails == [[1, 0], [2, 0]]
    assert LotService(FakeQualityReader()).heatmap().lots == []


# ----------------- Fixtures -----------------

def test_fixture_health_bands():
    assert fixture_health(0.05, False) == "GOOD"
    assert fixture_health(0.06, False) == "WARN"
    assert fixture_health(0.11, False) == "BAD"
    assert fixture_health(0.0, True) == "BAD"


def test_calibration_age_against_anchor():
    fx = Fixture(id=1, code="FX", last_calibrated_at=T0 - timedelta(days=91))
    assert calibration_overdue(fx, T0)
    assert not calibration_overdue(fx, T0 - timedelta(days=2))
    assert not calibration_overdue(Fixture(id=2, code="FX2"), T0)


def test_fixture_summaries():
    fixtures = [
        Fixture(id=12, code="FX-LEAK-01", last_calibrated_at=T0 - timedelta(days=100)),
        Fixture(id=13, code="FX-ASSY-01", last_calibrated_at=T0 - timedelta(days=10)),
        Fixture(id=14, code="FX-SPARE"),
    ]
    leak = [execution(i, LEAK, "FAIL" if i <= 2 else "PASS", fixture_id=12) for i in range(1, 11)]
    assy = [execution(i, ASSY, "FAIL" if i <= 2 else "PASS", fixture_id=13) for i in range(1, 21)]
    episodes = [episode(1, affected_fixtures=[12]), episode(2, affected_steps=[ASSY])]
    reader = FakeQualityReader(steps=line_steps(), fixtures=fixtures, executions=leak + assy, episodes=episodes)

    summaries = FixtureService(reader).summaries()
    assert [s.fixture.code for s in summaries] == ["FX-LEAK-01", "FX-ASSY-01", "FX-SPARE"]
    leak_fx, assy_fx, spare = summaries
    assert leak_fx.usage_count == 10
    assert leak_fx.correlated_failure_rate == pytest.approx(0.2)
    assert leak_fx.calibration_overdue
    assert leak_fx.episode_count == 1
    assert leak_fx.health == "BAD"
    assert assy_fx.correlated_failure_rate == pytest.approx(0.1)
    assert assy_fx.health == "WARN"
    assert assy_fx.episode_count == 1
    assert spare.usage_count == 0
    assert spare.health == "GOOD"
