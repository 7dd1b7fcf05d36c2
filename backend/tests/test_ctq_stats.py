# tests/test_ctq_stats.py
from datetime import datetime, timedelta, timezone
from zoneinfo import ZoneInfo

import pytest

from linesight.domain import ComponentLot, Unit
from linesight.errors import NotFoundError
from linesight.services.ctq_stats import CtqStatsService, breakdown, capability, histogram, summarize_ctq

from conftest import LEAK, T0, FakeQualityReader, ctq, execution, measurement

LEAK_RATE = ctq(5, "LEAK_RATE", LEAK, lsl=3.75, usl=4.2)
UTC = ZoneInfo("UTC")


def test_two_sided_capability():
    cp, cpk = capability(LEAK_RATE, 4.0, 0.05)
    assert cp == pytest.approx(1.5)
    assert cpk == pytest.approx(1.3333)


def test_one_sided_capability_has_no_cp():
    strength = ctq(7, "BOND_STRENGTH", LEAK, direction="HIGHER_BETTER", lsl=10.0, usl=20.0)
    cp, cpk = capability(strength, 12.0, 1.0)
    assert cp is None
    assert cpk == pytest.approx(0.6667)


def test_no_spread_no_capability():
    assert capability(LEAK_RATE, 4.0, 0.0) == (None, None)
    assert capability(LEAK_RATE, None, 0.1) == (None, None)


def test_histogram_needs_five_values():
    assert histogram([1.0, 2.0, 3.0, 4.0]) == []
    bins = histogram([float(v) for v in range(10)])
    assert len(bins) == 10
    assert [b.count for b in bins] == [1] * 10
    assert bins[0].lower == 0.0
    assert bins[-1].upper == pytest.approx(9.0)


def test_histogram_of_constant_values():
    bins = histogram([4.0] * 5)
    assert bins[0].count == 5
    assert sum(b.count for b in bins) == 5


def _split_day_readings():
    morning = datetime(2025, 3, 10, 3, 0, tzinfo=timezone.utc)
    evening = datetime(2025, 3, 10, 20, 0, tzinfo=timezone.utc)
    stamps = [morning, morning + timedelta(minutes=1), morning + timedelta(minutes=2), evening, evening + timedelta(minutes=1)]
    return [measurement(100 + i, LEAK_RATE, 4.0, at=ts) for i, ts in enumerate(stamps)]


def test_daily_points_follow_time_zone():
    readings = _split_day_readings()
    utc_days = summarize_ctq(LEAK_RATE, readings, UTC).daily
    la_days = summarize_ctq(LEAK_RATE, readings, ZoneInfo("America/Los_Angeles")).daily
    assert [(p.day.isoformat(), p.count) for p in utc_days] == [("2025-03-10", 5)]
    assert [(p.day.isoformat(), p.count) for p in la_days] == [("2025-03-09", 3), ("2025-03-10", 2)]


def test_summary_stats_and_breakdowns():
    execs = [
        execution(i, LEAK, fixture_code="FX-A" if i <= 3 else "FX-B", station_code="LT-1")
        for i in range(1, 7)
    ]
    values = [4.0, 4.1, 4.3, 3.9, 4.0, 3.95]
    readings = [measurement(e.id, LEAK_RATE, v) for e, v in zip(execs, values)]
    summary = summarize_ctq(
        LEAK_RATE,
        readings,
        UTC,
        executions_by_id={e.id: e for e in execs},
        lot_numbers_by_unit={1: ["L-20"], 2: ["L-20"], 3: ["L-21"]},
    )
    assert summary.count == 6
    assert summary.out_of_spec == 1
    assert summary.out_of_spec_rate == pytest.approx(1 / 6)
    assert summary.min_value == 3.9
    assert summary.max_value == 4.3
    assert summary.worst_fixtures[0].key == "FX-A"
    assert summary.worst_fixtures[0].fail_share == 1.0
    assert summary.worst_lots[0].key == "L-21"
    assert {b.key for b in summary.worst_lots} == {"L-20", "L-21", "Unknown"}
    assert summary.worst_stations[0].total == 6


def test_breakdown_limit():
    readings = [measurement(i, LEAK_RATE, 4.0) for i in range(8)]
    rows = breakdown(readings, LEAK_RATE, lambda m: [f"K{m.execution_id}"], limit=3)
    assert len(rows) == 3
    assert [r.key for r in rows] == ["K0", "K1", "K2"]


def test_service_window_ends_at_newest_measurement():
    execs = [execution(1, LEAK, at=T0 - timedelta(days=10)), execution(2, LEAK, at=T0)]
    readings = [
        measurement(execs[0].id, LEAK_RATE, 4.5, at=T0 - timedelta(days=10)),
        measurement(execs[1].id, LEAK_RATE, 4.0, at=T0),
    ]
    reader = FakeQualityReader(
        ctqs=[LEAK_RATE],
        executions=execs,
        measurements=readings,
        units=[Unit(id=2, serial="U2", lot_ids=(20,))],
        lots=[ComponentLot(id=20, lot_number="L-20")],
    )
    week = CtqStatsService(reader).summary(5, days=7)
    assert week.count == 1
    assert week.window_to == T0
    assert week.window_from == T0 - timedelta(days=7)
    assert week.worst_lots[0].key == "L-20"
    assert CtqStatsService(reader).summary(5, days=None).count == 2


def test_service_unknown_ctq():
    with pytest.raises(NotFoundError):
        CtqStatsService(FakeQualityReader(ctqs=[LEAK_RATE])).summary(99)


def test_service_without_measurements():
    summary = CtqStatsService(FakeQualityReader(ctqs=[LEAK_RATE])).summary(5)
    assert summary.count == 0
    assert summary.mean is None
    assert summary.histogram == []
