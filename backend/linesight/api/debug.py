from __future__ import annotations

from fastapi import APIRouter, Depends

from linesight.dependencies import get_reader
from linesight.schemas.data_quality import (
    CoverageRowOut,
    DataQualityOut,
    DuplicateRowOut,
    LatencyOut,
    MissingCtqRowOut,
    OutOfOrderOut,
    SerialCollisionOut,
    UnloopedRepeatsOut,
)
from linesight.services.data_quality import DataQualityService

router = APIRouter(prefix="/debug", tags=["Debug"])


@router.get("/data-quality", response_model=DataQualityOut)
def data_quality(reader=Depends(get_reader)):
    """Ingestion anomalies over the last 24h of data; read-only, changes no metric."""
    snap = DataQualityService(reader).snapshot()
    return DataQualityOut(
        window_from=snap.window_from,
        window_to=snap.window_to,
        coverage=[
            CoverageRowOut(
                step_id=row.step.id,
                code=row.step.code,
                name=row.step.name,
                expected_units=row.expected_units,
                actual_units=row.actual_units,
                coverage=row.coverage,
                status=row.status,
            )
            for row in snap.coverage
        ],
        duplicates=[DuplicateRowOut.model_validate(d) for d in snap.duplicates],
        serial_collisions=[SerialCollisionOut.model_validate(c) for c in snap.serial_collisions],
        out_of_order=OutOfOrderOut.model_validate(snap.out_of_order),
        unlooped_repeats=UnloopedRepeatsOut.model_validate(snap.unlooped_repeats),
        missing_ctqs=[
            MissingCtqRowOut(
                ctq_id=row.ctq.id,
                name=row.ctq.name,
                step_name=row.step_name,
                expected=row.expected,
                measured=row.measured,
                missing=row.missing,
                missing_rate=row.missing_rate,
                status=row.status,
            )
            for row in snap.missing_ctqs
        ],
        unknown_directions=snap.unknown_directions,
        latency=LatencyOut.model_validate(snap.latency) if snap.latency is not None else None,
    )
