# tests/conftest.py
# Shared builders and an in-memory reader standing in for the store.

import itertools
from dataclasses import replace
from datetime import datetime, timedelta, timezone
from typing import Iterable, List, Optional

import pytest
from fastapi.testclient import TestClient

from linesight.dependencies import get_reader
from linesight.domain import (
    ComponentLot,
    CtqDefinition,
    Episode,
    Execution,
    Fixture,
    Measurement,
    StepDefinition,
    Unit,
)
from linesight.errors import StoreReadError
from linesight.main import app
from linesight.services.ordering import EPOCH, as_utc, effective_timestamp, latest_timestamp
from linesight.services.reader import normalize_serial

T0 = datetime(2025, 3, 10, 12, 0, tzinfo=timezone.utc)

_ids = itertools.count(1)


# ----------------- Builders -----------------

def step(id: int, code: str, sequence: int, step_type: str = "ASSEMBLY", name: Optional[str] = None) -> StepDefinition:
    return StepDefinition(
        id=id,
        code=code,
        name=name or code.replace("_", " ").title(),
        sequence=sequence,
        step_type=step_type,
        can_scrap=step_type in ("TEST", "INSPECTION"),
    )


def execution(
    unit_id: int,
    step_id: int,
    result: str = "PASS",
    at: Optional[datetime] = None,
    loop: Optional[str] = None,
    **kw,
) -> Execution:
    at = at or T0
    kw.setdefault("id", next(_ids))
    kw.setdefault("started_at", at - timedelta(minutes=5))
    return Execution(
        unit_id=unit_id,
        step_id=step_id,
        result=result,
        completed_at=at,
        rework_loop_id=loop,
        **kw,
    )


def ctq(
    id: int,
    code: str,
    step_id: Optional[int],
    direction: str = "TWO_SIDED",
    lsl: Optional[float] = None,
    usl: Optional[float] = None,
    critical: bool = False,
) -> CtqDefinition:
    return CtqDefinition(
        id=id,
        code=code,
        name=code.replace("_", " ").title(),
        step_id=step_id,
        direction=direction,
        lower_spec_limit=lsl,
        upper_spec_limit=usl,
        units="",
        is_critical=critical,
    )


def measurement(execution_id: int, definition: CtqDefinition, value: float, at: Optional[datetime] = None) -> Measurement:
    return Measurement(
        id=next(_ids),
        execution_id=execution_id,
        ctq_id=definition.id,
        value=value,
        recorded_at=at or T0,
        ctq=definition,
    )


def episode(id: int, started_at: Optional[datetime] = None, **kw) -> Episode:
    kw.setdefault("title", f"Episode {id}")
    return Episode(id=id, started_at=started_at or T0 - timedelta(days=id), **kw)


# ----------------- Fake store -----------------

class FakeQualityReader:
    """QualityReader over plain lists; filters mirror SqlQualityReader."""

    def __init__(
        self,
        steps: Iterable[StepDefinition] = (),
        ctqs: Iterable[CtqDefinition] = (),
        executions: Iterable[Execution] = (),
        measurements: Iterable[Measurement] = (),
        units: Iterable[Unit] = (),
        lots: Iterable[ComponentLot] = (),
        fixtures: Iterable[Fixture] = (),
        episodes: Iterable[Episode] = (),
    ):
        self.steps = list(steps)
        self.ctqs = list(ctqs)
        self.executions = list(executions)
        self.measurements = list(measurements)
        self.units = list(units)
        self.lots = list(lots)
        self.fixtures = list(fixtures)
        self.episodes = list(episodes)

    def fetch_steps(self) -> List[StepDefinition]:
        return sorted(self.steps, key=lambda s: s.sequence)

    def fetch_ctqs(self, ctq_ids=None, critical_only=False) -> List[CtqDefinition]:
        wanted = set(ctq_ids) if ctq_ids is not None else None
        return [
            c for c in sorted(self.ctqs, key=lambda c: c.id)
            if (wanted is None or c.id in wanted) and (not critical_only or c.is_critical)
        ]

    def fetch_latest_execution_time(self) -> Optional[datetime]:
        return latest_timestamp(self.executions)

    def fetch_executions(
        self, unit_ids=None, since=None, until=None, step_ids=None, fixture_ids=None, execution_ids=None
    ) -> List[Execution]:
        codes = {s.id: s.code for s in self.steps}
        fixture_codes = {f.id: f.code for f in self.fixtures}
        out = []
        for e in self.executions:
            ts = effective_timestamp(e)
            if (since is not None and ts < as_utc(since)) or (until is not None and ts > as_utc(until)):
                continue
            if unit_ids is not None and e.unit_id not in set(unit_ids):
                continue
            if step_ids is not None and e.step_id not in set(step_ids):
                continue
            if fixture_ids is not None and e.fixture_id not in set(fixture_ids):
                continue
            if execution_ids is not None and e.id not in set(execution_ids):
                continue
            out.append(
                replace(
                    e,
                    step_code=e.step_code or codes.get(e.step_id),
                    fixture_code=e.fixture_code or fixture_codes.get(e.fixture_id),
                )
            )
        return out

    def fetch_measurements(self, ctq_ids=None, execution_ids=None, since=None, until=None) -> List[Measurement]:
        defs = {c.id: c for c in self.ctqs}
        out = []
        for m in self.measurements:
            ts = as_utc(m.recorded_at)
            if ctq_ids is not None and m.ctq_id not in set(ctq_ids):
                continue
            if execution_ids is not None and m.execution_id not in set(execution_ids):
                continue
            if since is not None and (ts is None or ts < since):
                continue
            if until is not None and (ts is None or ts > until):
                continue
            out.append(replace(m, ctq=m.ctq or defs.get(m.ctq_id)))
        return out

    def fetch_units(self, serial=None, unit_ids=None, created_since=None, created_until=None) -> List[Unit]:
        out = []
        for u in sorted(self.units, key=lambda u: u.id):
            created = as_utc(u.created_at)
            if serial is not None and normalize_serial(u.serial) != normalize_serial(serial):
                continue
            if unit_ids is not None and u.id not in set(unit_ids):
                continue
            if created_since is not None and (created is None or created < created_since):
                continue
            if created_until is not None and (created is None or created > created_until):
                continue
            out.append(u)
        return out

    def fetch_lots(self, lot_ids=None) -> List[ComponentLot]:
        return [lot for lot in self.lots if lot_ids is None or lot.id in set(lot_ids)]

    def fetch_fixtures(self, fixture_ids=None) -> List[Fixture]:
        return [f for f in self.fixtures if fixture_ids is None or f.id in set(fixture_ids)]

    def fetch_episodes(self, status=None, category=None, search=None) -> List[Episode]:
        needle = (search or "").strip().lower()
        found = [
            ep for ep in self.episodes
            if (not status or (ep.status or "").upper() == status.upper())
            and (not category or (ep.root_cause_category or "").upper() == category.upper())
            and (not needle or needle in (ep.title or "").lower() or needle in (ep.summary or "").lower())
        ]
        return sorted(found, key=lambda ep: (as_utc(ep.started_at) or EPOCH, ep.id), reverse=True)

    def fetch_episode(self, episode_id: int) -> Optional[Episode]:
        return next((ep for ep in self.episodes if ep.id == episode_id), None)


class BrokenReader:
    """Every read fails the way a dropped connection does."""

    def __getattr__(self, name):
        if not name.startswith("fetch_"):
            raise AttributeError(name)

        def _fail(*args, **kwargs):
            raise StoreReadError(f"{name} failed: OperationalError")

        return _fail


# ----------------- Standard line -----------------

KIT, ASSY, LEAK, FQC, DEBUG = 1, 2, 3, 4, 9


def line_steps() -> List[StepDefinition]:
    return [
        step(KIT, "KITTING", 10),
        step(ASSY, "CASE_ASSEMBLY", 20),
        step(LEAK, "LEAK_TEST", 30, "TEST"),
        step(FQC, "FINAL_QC", 40, "INSPECTION"),
        step(DEBUG, "REWORK_DEBUG", 90, "DEBUG"),
    ]


def walk(unit_id: int, start: datetime, results=None, step_ids=(KIT, ASSY, LEAK, FQC), **kw) -> List[Execution]:
    """One execution per step, ten minutes apart; `results` overrides per step id."""
    results = results or {}
    return [
        execution(unit_id, sid, results.get(sid, "PASS"), at=start + timedelta(minutes=10 * i), **kw)
        for i, sid in enumerate(step_ids)
    ]


@pytest.fixture
def steps() -> List[StepDefinition]:
    return line_steps()


@pytest.fixture
def api():
    """TestClient factory bound to a given reader."""

    def _client(reader) -> TestClient:
        app.dependency_overrides[get_reader] = lambda: reader
        return TestClient(app)

    yield _client
    app.dependency_overrides.clear()
