# tests/test_api.py
from datetime import timedelta

from linesight.domain import ComponentLot, Fixture, Unit
from linesight.services.ctq_spec import ABOVE_UPPER

from conftest import (
    ASSY,
    KIT,
    LEAK,
    T0,
    BrokenReader,
    FakeQualityReader,
    ctq,
    episode,
    line_steps,
    measurement,
    walk,
)

LEAK_RATE = ctq(5, "LEAK_RATE", LEAK, lsl=3.75, usl=4.2, critical=True)


def _reader():
    scrapped = walk(2, T0 + timedelta(seconds=1), {LEAK: "SCRAP"}, step_ids=(KIT, ASSY, LEAK), fixture_id=12)
    execs = walk(1, T0, fixture_id=12) + scrapped
    leak = next(e for e in execs if e.unit_id == 1 and e.step_id == LEAK)
    return FakeQualityReader(
        steps=line_steps(),
        ctqs=[LEAK_RATE],
        executions=execs,
        measurements=[measurement(leak.id, LEAK_RATE, 4.25, at=leak.completed_at)],
        units=[
            Unit(id=1, serial="LS-0001", created_at=T0, final_result="PASS", lot_ids=(21,)),
            Unit(id=2, serial="LS-0002", created_at=T0, final_result="SCRAP", lot_ids=(21,)),
        ],
        lots=[ComponentLot(id=21, lot_number="L-21", component_name="O-ring")],
        fixtures=[Fixture(id=12, code="FX-LEAK-01", last_calibrated_at=T0 - timedelta(days=5))],
        episodes=[
            episode(1, status="OPEN", root_cause_category="FIXTURE", title="Leak seal wear",
                    affected_steps=[{"stepId": LEAK, "deltaFpy": -0.04}], affected_fixtures=[12]),
            episode(2, status="CLOSED", root_cause_category="SUPPLIER", summary="x" * 300, affected_lots=[21]),
        ],
    )


def test_version(api):
    client = api(_reader())
    r = client.get("/version")
    assert r.status_code == 200, r.text
    assert r.json()["app"] == "LineSight Quality Analytics"


# ----------------- Metrics -----------------

def test_line_overview(api):
    r = api(_reader()).get("/metrics/line-overview?range=24&bucket=day")
    assert r.status_code == 200, r.text
    body = r.json()
    assert body["range_hours"] == 72
    assert [b["label"] for b in body["time_buckets"]] == ["24h", "24h", "Now"]
    assert body["overall"]["throughput"] == 1
    assert body["overall"]["scrap_rate"] == 0.5
    assert body["stations"][0]["code"] == "LEAK_TEST"


def test_line_overview_rejects_unknown_bucket(api):
    r = api(_reader()).get("/metrics/line-overview?bucket=fortnight")
    assert r.status_code == 422


def test_stations(api):
    r = api(_reader()).get("/metrics/stations?window=last7d")
    assert r.status_code == 200, r.text
    body = r.json()
    assert body["window"] == "last7d"
    assert body["worst_by_fpy"]["code"] == "LEAK_TEST"
    debug = next(s for s in body["stations"] if s["code"] == "REWORK_DEBUG")
    assert debug["is_excluded"] is True


def test_trends_on_quiet_line(api):
    r = api(_reader()).get("/metrics/trends")
    assert r.status_code == 200, r.text
    assert r.json()["scenarios"] == []
    assert r.json()["anchor"] is not None


def test_rework_flow(api):
    r = api(_reader()).get("/metrics/rework-flow?range=24&min_units=1")
    assert r.status_code == 200, r.text
    body = r.json()
    assert body["sufficient"] is True
    assert body["total_units"] == 2
    assert body["nodes"][-1]["id"] == "SCRAP"
    scrap = next(link for link in body["links"] if link["target"] == "SCRAP")
    assert (scrap["source"], scrap["value"], scrap["kind"]) == ("LEAK_TEST", 1, "scrap")


def test_rework_flow_flags_small_population(api):
    body = api(_reader()).get("/metrics/rework-flow").json()
    assert body["min_units"] == 20
    assert body["sufficient"] is False


# ----------------- Similarity & episodes -----------------

def test_similarity(api):
    payload = {
        "affected_steps": [{"step_id": LEAK, "delta_fpy": -0.04}],
        "fixtures": [12],
        "failure_codes": [],
    }
    r = api(_reader()).post("/similarity", json=payload)
    assert r.status_code == 200, r.text
    (top,) = r.json()["results"]
    assert top["id"] == 1
    assert top["score"] == 4.5
    assert top["why"] == "Station/step overlap · Fixture overlap"


def test_similarity_empty_context(api):
    r = api(_reader()).post("/similarity", json={})
    assert r.status_code == 200, r.text
    assert r.json()["results"] == []


def test_similarity_limit_bounds(api):
    r = api(_reader()).post("/similarity?limit=0", json={"lots": [21]})
    assert r.status_code == 422


def test_episode_list_and_trim(api):
    client = api(_reader())
    body = client.get("/episodes").json()
    assert [ep["id"] for ep in body["episodes"]] == [1, 2]
    assert len(body["episodes"][1]["summary"]) == 200
    assert [ep["id"] for ep in client.get("/episodes?status=open").json()["episodes"]] == [1]
    assert [ep["id"] for ep in client.get("/episodes?q=seal").json()["episodes"]] == [1]


def test_episode_detail(api):
    r = api(_reader()).get("/episodes/1")
    assert r.status_code == 200, r.text
    body = r.json()
    assert [s["code"] for s in body["affected_steps"]] == ["LEAK_TEST"]
    assert [f["code"] for f in body["affected_fixtures"]] == ["FX-LEAK-01"]
    assert body["affected_ctqs"] is None


def test_episode_detail_keeps_unresolved_payload(api):
    reader = FakeQualityReader(steps=line_steps(), episodes=[episode(9, affected_lots=["L-99 supplier batch"])])
    body = api(reader).get("/episodes/9").json()
    assert body["affected_lots"] == ["L-99 supplier batch"]


def test_episode_not_found(api):
    r = api(_reader()).get("/episodes/999")
    assert r.status_code == 404
    assert r.json()["detail"] == "episode not found: 999"


# ----------------- Traceability -----------------

def test_unit_trace(api):
    r = api(_reader()).get("/units/ls-0001")
    assert r.status_code == 200, r.text
    body = r.json()
    assert body["unit"]["serial"] == "LS-0001"
    assert [lot["lot_number"] for lot in body["lots"]] == ["L-21"]
    leak = next(e for e in body["executions"] if e["step_code"] == "LEAK_TEST")
    assert leak["recorded_result"] == "PASS"
    assert leak["result"] == "FAIL"
    assert leak["ctqs"][0]["violation"] == ABOVE_UPPER
    assert body["episodes"][0]["id"] == 1


def test_unit_not_found(api):
    r = api(_reader()).get("/units/NOPE-1")
    assert r.status_code == 404
    assert "NOPE-1" in r.json()["detail"]


def test_lots_and_heatmap(api):
    client = api(_reader())
    (lot,) = client.get("/lots").json()["lots"]
    assert lot["units_built"] == 2
    assert lot["health"] == "BAD"
    assert lot["episode_count"] == 1

    hm = client.get("/lots/heatmap?days=7").json()
    assert hm["days"] == 7
    assert hm["fails"] == [[1]]
    assert hm["matrix"] == [[1.0]]


def test_fixtures(api):
    (fx,) = api(_reader()).get("/fixtures").json()["fixtures"]
    assert fx["code"] == "FX-LEAK-01"
    assert fx["calibration_overdue"] is False
    assert fx["episode_count"] == 1


def test_ctq_summary(api):
    r = api(_reader()).get("/ctqs/5/summary?days=7&tz=America/Chicago")
    assert r.status_code == 200, r.text
    body = r.json()
    assert body["tz"] == "America/Chicago"
    assert body["count"] == 1
    assert body["out_of_spec"] == 1
    assert body["histogram"] == []


def test_ctq_summary_errors(api):
    client = api(_reader())
    assert client.get("/ctqs/5/summary?tz=Mars/Olympus").status_code == 400
    assert client.get("/ctqs/99/summary").status_code == 404
    assert client.get("/ctqs/5/summary?days=0").status_code == 422


def test_data_quality(api):
    r = api(_reader()).get("/debug/data-quality")
    assert r.status_code == 200, r.text
    body = r.json()
    assert body["serial_collisions"] == []
    assert body["unknown_directions"] == []


# ----------------- Store failures -----------------

def test_store_failure_is_503(api):
    client = api(BrokenReader())
    for path in ("/metrics/trends", "/metrics/stations", "/units/LS-0001", "/episodes", "/lots"):
        r = client.get(path)
        assert r.status_code == 503, path
        assert r.json()["detail"] == "Quality data store unavailable"
