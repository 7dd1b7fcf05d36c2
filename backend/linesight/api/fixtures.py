from __future__ import annotations

from fastapi import APIRouter, Depends

from linesight.dependencies import get_reader
from linesight.schemas.health import FixturesOut, FixtureSummaryOut
from linesight.services.fixtures import FixtureService

router = APIRouter(prefix="/fixtures", tags=["Fixtures"])


@router.get("", response_model=FixturesOut)
def list_fixtures(reader=Depends(get_reader)):
    rows = FixtureService(reader).summaries()
    return FixturesOut(
        fixtures=[
            FixtureSummaryOut(
                id=s.fixture.id,
                code=s.fixture.code,
                fixture_type=s.fixture.fixture_type,
                station_code=s.fixture.station_code,
                status=s.fixture.status,
                last_calibrated_at=s.fixture.last_calibrated_at,
                usage_count=s.usage_count,
                correlated_failure_rate=s.correlated_failure_rate,
                episode_count=s.episode_count,
                calibration_overdue=s.calibration_overdue,
                health=s.health,
            )
            for s in rows
        ]
    )
