from __future__ import annotations

from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from fastapi import APIRouter, Depends, HTTPException, Query

from linesight.dependencies import get_reader
from linesight.schemas.common import CtqOut
from linesight.schemas.ctq import BreakdownOut, CtqSummaryOut, DailyPointOut, HistogramBinOut
from linesight.services.ctq_stats import CtqStatsService

router = APIRouter(prefix="/ctqs", tags=["CTQs"])


def _valid_tz(tz: str) -> str:
    try:
        ZoneInfo(tz)
    except (ZoneInfoNotFoundError, ValueError):
        raise HTTPException(status_code=400, detail=f"Unknown time zone: {tz}")
    return tz


@router.get("/{ctq_id}/summary", response_model=CtqSummaryOut)
def ctq_summary(
    ctq_id: int,
    days: int = Query(7, ge=1, le=365, description="Trailing days ending at the newest measurement"),
    tz: str = Query("UTC", description="IANA zone for daily buckets"),
    reader=Depends(get_reader),
):
    s = CtqStatsService(reader).summary(ctq_id, days=days, tz=_valid_tz(tz))

    return CtqSummaryOut(
        ctq=CtqOut.model_validate(s.ctq),
        tz=tz,
        days=days,
        window_from=s.window_from,
        window_to=s.window_to,
        count=s.count,
        mean=s.mean,
        std_dev=s.std_dev,
        min_value=s.min_value,
        max_value=s.max_value,
        out_of_spec=s.out_of_spec,
        out_of_spec_rate=s.out_of_spec_rate,
        cp=s.cp,
        cpk=s.cpk,
        histogram=[HistogramBinOut.model_validate(b) for b in s.histogram],
        daily=[DailyPointOut.model_validate(p) for p in s.daily],
        worst_lots=[BreakdownOut.model_validate(b) for b in s.worst_lots],
        worst_fixtures=[BreakdownOut.model_validate(b) for b in s.worst_fixtures],
        worst_stations=[BreakdownOut.model_validate(b) for b in s.worst_stations],
    )
