# linesight/services/reader.py
"""
Read interface between the engine and the store.

Services take a `QualityReader` in their constructor and never touch a
session directly. `SqlQualityReader` is the production implementation; tests
pass an in-memory fake. Reads are never retried here: a failing store turns
into `StoreReadError` and voids the whole computation.
"""
from __future__ import annotations

import functools
import logging
from datetime import datetime
from typing import Dict, Iterable, Iterator, List, Optional, Protocol, Sequence

from sqlalchemy import func, or_, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from linesight import domain
from linesight.errors import StoreReadError
from linesight.models import (
    ComponentLot,
    CTQDefinition,
    Episode,
    Fixture,
    KitComponentLot,
    Measurement,
    ProcessStepDefinition,
    ProcessStepExecution,
    Unit,
)
from linesight.services.ordering import as_utc

logger = logging.getLogger(__name__)

# Keeps IN (...) lists under every backend's bound-parameter limit.
IN_CHUNK = 500


class QualityReader(Protocol):
    def fetch_steps(self) -> List[domain.StepDefinition]: ...

    def fetch_ctqs(
        self, ctq_ids: Optional[Iterable[int]] = None, critical_only: bool = False
    ) -> List[domain.CtqDefinition]: ...

    def fetch_latest_execution_time(self) -> Optional[datetime]: ...

    def fetch_executions(
        self,
        unit_ids: Optional[Iterable[int]] = None,
        since: Optional[datetime] = None,
        until: Optional[datetime] = None,
        step_ids: Optional[Iterable[int]] = None,
        fixture_ids: Optional[Iterable[int]] = None,
        execution_ids: Optional[Iterable[int]] = None,
    ) -> List[domain.Execution]: ...

    def fetch_measurements(
        self,
        ctq_ids: Optional[Iterable[int]] = None,
        execution_ids: Optional[Iterable[int]] = None,
        since: Optional[datetime] = None,
        until: Optional[datetime] = None,
    ) -> List[domain.Measurement]: ...

    def fetch_units(
        self,
        serial: Optional[str] = None,
        unit_ids: Optional[Iterable[int]] = None,
        created_since: Optional[datetime] = None,
        created_until: Optional[datetime] = None,
    ) -> List[domain.Unit]: ...

    def fetch_lots(self, lot_ids: Optional[Iterable[int]] = None) -> List[domain.ComponentLot]: ...

    def fetch_fixtures(self, fixture_ids: Optional[Iterable[int]] = None) -> List[domain.Fixture]: ...

    def fetch_episodes(
        self,
        status: Optional[str] = None,
        category: Optional[str] = None,
        search: Optional[str] = None,
    ) -> List[domain.Episode]: ...

    def fetch_episode(self, episode_id: int) -> Optional[domain.Episode]: ...


def normalize_serial(serial: str) -> str:
    return (serial or "").strip().upper()


def _chunks(ids: Sequence[int], size: int = IN_CHUNK) -> Iterator[List[int]]:
    for i in range(0, len(ids), size):
        yield list(ids[i:i + size])


def _store_read(fn):
    """Re-raise driver/ORM failures as StoreReadError."""

    @functools.wraps(fn)
    def wrapper(*args, **kwargs):
        try:
            return fn(*args, **kwargs)
        except SQLAlchemyError as exc:
            raise StoreReadError(f"{fn.__name__} failed: {exc.__class__.__name__}") from exc

    return wrapper


# ---------- Row -> domain ----------

def _step(row: ProcessStepDefinition) -> domain.StepDefinition:
    return domain.StepDefinition(
        id=row.id,
        code=row.code,
        name=row.name,
        sequence=row.sequence,
        step_type=domain.enum_value(row.step_type) or domain.StepType.ASSEMBLY.value,
        can_scrap=bool(row.can_scrap),
    )


def _ctq(row: CTQDefinition) -> domain.CtqDefinition:
    return domain.CtqDefinition(
        id=row.id,
        code=row.code,
        name=row.name,
        step_id=row.process_step_definition_id,
        direction=domain.enum_value(row.direction),
        lower_spec_limit=row.lower_spec_limit,
        upper_spec_limit=row.upper_spec_limit,
        target=row.target,
        units=row.units or "",
        is_critical=bool(row.is_critical),
    )


def _execution(row: ProcessStepExecution, step_code: Optional[str], fixture_code: Optional[str]) -> domain.Execution:
    return domain.Execution(
        id=row.id,
        unit_id=row.unit_id,
        step_id=row.process_step_definition_id,
        result=domain.enum_value(row.result),
        started_at=as_utc(row.started_at),
        completed_at=as_utc(row.completed_at),
        rework_loop_id=row.rework_loop_id,
        origin_step_id=row.original_failure_step_id,
        station_code=row.station_code,
        fixture_id=row.fixture_id,
        fixture_code=fixture_code,
        failure_code=row.failure_code,
        step_code=step_code,
    )


def _lot(row: ComponentLot) -> domain.ComponentLot:
    return domain.ComponentLot(
        id=row.id,
        lot_number=row.lot_number,
        component_name=row.component_name or "",
        supplier=row.supplier,
        received_at=as_utc(row.received_at),
    )


def _fixture(row: Fixture) -> domain.Fixture:
    return domain.Fixture(
        id=row.id,
        code=row.code,
        fixture_type=row.fixture_type,
        station_code=row.station_code,
        status=row.status,
        last_calibrated_at=as_utc(row.last_calibrated_at),
    )


def _episode(row: Episode) -> domain.Episode:
    return domain.Episode(
        id=row.id,
        title=row.title,
        summary=row.summary or "",
        status=domain.enum_value(row.status),
        root_cause_category=domain.enum_value(row.root_cause_category),
        effectiveness_tag=row.effectiveness_tag,
        started_at=as_utc(row.started_at),
        ended_at=as_utc(row.ended_at),
        created_at=as_utc(row.created_at),
        updated_at=as_utc(row.updated_at),
        affected_steps=row.affected_steps,
        affected_ctqs=row.affected_ctqs,
        affected_lots=row.affected_lots,
        affected_fixtures=row.affected_fixtures,
        before_metrics=row.before_metrics,
        after_metrics=row.after_metrics,
        external_links=row.external_links,
    )


class SqlQualityReader:
    """QualityReader over the upstream schema via SQLAlchemy."""

    def __init__(self, session: Session) -> None:
        self.session = session

    # ----- reference data -----

    @_store_read
    def fetch_steps(self) -> List[domain.StepDefinition]:
        stmt = select(ProcessStepDefinition).order_by(ProcessStepDefinition.sequence.asc())
        return [_step(r) for r in self.session.execute(stmt).scalars().all()]

    @_store_read
    def fetch_ctqs(self, ctq_ids=None, critical_only: bool = False) -> List[domain.CtqDefinition]:
        stmt = select(CTQDefinition).order_by(CTQDefinition.id.asc())
        if ctq_ids is not None:
            stmt = stmt.where(CTQDefinition.id.in_(list(ctq_ids)))
        if critical_only:
            stmt = stmt.where(CTQDefinition.is_critical.is_(True))
        return [_ctq(r) for r in self.session.execute(stmt).scalars().all()]

    @_store_read
    def fetch_lots(self, lot_ids=None) -> List[domain.ComponentLot]:
        stmt = select(ComponentLot).order_by(ComponentLot.id.asc())
        if lot_ids is not None:
            stmt = stmt.where(ComponentLot.id.in_(list(lot_ids)))
        return [_lot(r) for r in self.session.execute(stmt).scalars().all()]

    @_store_read
    def fetch_fixtures(self, fixture_ids=None) -> List[domain.Fixture]:
        stmt = select(Fixture).order_by(Fixture.code.asc())
        if fixture_ids is not None:
            stmt = stmt.where(Fixture.id.in_(list(fixture_ids)))
        return [_fixture(r) for r in self.session.execute(stmt).scalars().all()]

    # ----- executions -----

    @_store_read
    def fetch_latest_execution_time(self) -> Optional[datetime]:
        ts = func.coalesce(ProcessStepExecution.completed_at, ProcessStepExecution.started_at)
        return as_utc(self.session.execute(select(func.max(ts))).scalar())

    @_store_read
    def fetch_executions(
        self,
        unit_ids=None,
        since: Optional[datetime] = None,
        until: Optional[datetime] = None,
        step_ids=None,
        fixture_ids=None,
        execution_ids=None,
    ) -> List[domain.Execution]:
        ts = func.coalesce(ProcessStepExecution.completed_at, ProcessStepExecution.started_at)
        base = (
            select(ProcessStepExecution, ProcessStepDefinition.code, Fixture.code)
            .join(ProcessStepDefinition, ProcessStepDefinition.id == ProcessStepExecution.process_step_definition_id)
            .outerjoin(Fixture, Fixture.id == ProcessStepExecution.fixture_id)
            .order_by(ProcessStepExecution.id.asc())
        )
        if since is not None:
            base = base.where(ts >= since)
        if until is not None:
            base = base.where(ts <= until)
        if step_ids is not None:
            base = base.where(ProcessStepExecution.process_step_definition_id.in_(list(step_ids)))
        if fixture_ids is not None:
            base = base.where(ProcessStepExecution.fixture_id.in_(list(fixture_ids)))

        if unit_ids is not None:
            key, ids = ProcessStepExecution.unit_id, unit_ids
        elif execution_ids is not None:
            key, ids = ProcessStepExecution.id, execution_ids
        else:
            key, ids = None, None

        if key is None:
            rows = self.session.execute(base).all()
        else:
            if unit_ids is not None and execution_ids is not None:
                base = base.where(ProcessStepExecution.id.in_(list(execution_ids)))
            rows = []
            for chunk in _chunks(sorted(set(ids))):
                rows.extend(self.session.execute(base.where(key.in_(chunk))).all())
            # arrival order across chunks; equal timestamps resolve by it
            rows.sort(key=lambda r: r[0].id)
        return [_execution(row, step_code, fixture_code) for row, step_code, fixture_code in rows]

    @_store_read
    def fetch_measurements(
        self,
        ctq_ids=None,
        execution_ids=None,
        since: Optional[datetime] = None,
        until: Optional[datetime] = None,
    ) -> List[domain.Measurement]:
        base = (
            select(Measurement, CTQDefinition)
            .join(CTQDefinition, CTQDefinition.id == Measurement.ctq_definition_id)
            .order_by(Measurement.id.asc())
        )
        if ctq_ids is not None:
            base = base.where(Measurement.ctq_definition_id.in_(list(ctq_ids)))
        if since is not None:
            base = base.where(Measurement.recorded_at >= since)
        if until is not None:
            base = base.where(Measurement.recorded_at <= until)

        if execution_ids is None:
            rows = self.session.execute(base).all()
        else:
            rows = []
            for chunk in _chunks(sorted(set(execution_ids))):
                rows.extend(self.session.execute(base.where(Measurement.process_step_execution_id.in_(chunk))).all())
            rows.sort(key=lambda r: r[0].id)
        return [
            domain.Measurement(
                id=m.id,
                execution_id=m.process_step_execution_id,
                ctq_id=m.ctq_definition_id,
                value=m.value,
                recorded_at=as_utc(m.recorded_at),
                ctq=_ctq(ctq),
            )
            for m, ctq in rows
        ]

    # ----- units -----

    def _lot_ids_by_kit(self, kit_ids: Iterable[int]) -> Dict[int, List[int]]:
        out: Dict[int, List[int]] = {}
        for chunk in _chunks(sorted(set(kit_ids))):
            stmt = (
                select(KitComponentLot.kit_id, KitComponentLot.component_lot_id)
                .where(KitComponentLot.kit_id.in_(chunk))
                .order_by(KitComponentLot.id.asc())
            )
            for kit_id, lot_id in self.session.execute(stmt).all():
                out.setdefault(kit_id, []).append(lot_id)
        return out

    @_store_read
    def fetch_units(
        self,
        serial: Optional[str] = None,
        unit_ids=None,
        created_since: Optional[datetime] = None,
        created_until: Optional[datetime] = None,
    ) -> List[domain.Unit]:
        stmt = select(Unit).order_by(Unit.id.asc())
        if serial is not None:
            stmt = stmt.where(func.upper(func.trim(Unit.serial)) == normalize_serial(serial))
        if unit_ids is not None:
            stmt = stmt.where(Unit.id.in_(list(unit_ids)))
        if created_since is not None:
            stmt = stmt.where(Unit.created_at >= created_since)
        if created_until is not None:
            stmt = stmt.where(Unit.created_at <= created_until)
        rows = self.session.execute(stmt).scalars().all()

        lots = self._lot_ids_by_kit(r.kit_id for r in rows if r.kit_id is not None)
        return [
            domain.Unit(
                id=r.id,
                serial=r.serial,
                created_at=as_utc(r.created_at),
                final_result=domain.enum_value(r.final_result) or None,
                kit_id=r.kit_id,
                lot_ids=tuple(lots.get(r.kit_id, ())) if r.kit_id is not None else (),
            )
            for r in rows
        ]

    # ----- episodes -----

    @_store_read
    def fetch_episodes(
        self,
        status: Optional[str] = None,
        category: Optional[str] = None,
        search: Optional[str] = None,
    ) -> List[domain.Episode]:
        stmt = select(Episode).order_by(Episode.started_at.desc(), Episode.id.desc())
        if status:
            stmt = stmt.where(func.upper(Episode.status) == status.strip().upper())
        if category:
            stmt = stmt.where(func.upper(Episode.root_cause_category) == category.strip().upper())
        if search and search.strip():
            pattern = f"%{search.strip().lower()}%"
            stmt = stmt.where(
                or_(func.lower(Episode.title).like(pattern), func.lower(Episode.summary).like(pattern))
            )
        return [_episode(r) for r in self.session.execute(stmt).scalars().all()]

    @_store_read
    def fetch_episode(self, episode_id: int) -> Optional[domain.Episode]:
        row = self.session.get(Episode, episode_id)
        return _episode(row) if row is not None else None
