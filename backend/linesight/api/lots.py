from __future__ import annotations

from fastapi import APIRouter, Depends, Query

from linesight.dependencies import get_reader
from linesight.schemas.common import CtqOut
from linesight.schemas.health import HeatmapLotOut, LotHeatmapOut, LotsOut, LotSummaryOut
from linesight.services.lots import HEATMAP_DEFAULT_DAYS, LotService

router = APIRouter(prefix="/lots", tags=["Lots"])


@router.get("", response_model=LotsOut)
def list_lots(reader=Depends(get_reader)):
    """Lot health table, worst yield first."""
    rows = LotService(reader).summaries()
    return LotsOut(
        lots=[
            LotSummaryOut(
                id=s.lot.id,
                lot_number=s.lot.lot_number,
                component_name=s.lot.component_name,
                supplier=s.lot.supplier,
                received_at=s.lot.received_at,
                units_built=s.units_built,
                yield_rate=s.yield_rate,
                rework_rate=s.rework_rate,
                scrap_rate=s.scrap_rate,
                correlated_failure_rate=s.correlated_failure_rate,
                episode_count=s.episode_count,
                health=s.health,
            )
            for s in rows
        ]
    )


@router.get("/heatmap", response_model=LotHeatmapOut)
def lot_heatmap(
    days: int = Query(HEATMAP_DEFAULT_DAYS, ge=1, le=365),
    reader=Depends(get_reader),
):
    hm = LotService(reader).heatmap(days=days)
    return LotHeatmapOut(
        days=days,
        window_from=hm.window_from,
        window_to=hm.window_to,
        lots=[
            HeatmapLotOut(
                id=lot.id,
                lot_number=lot.lot_number,
                component_name=lot.component_name,
                supplier=lot.supplier,
            )
            for lot in hm.lots
        ],
        ctqs=[CtqOut.model_validate(c) for c in hm.ctqs],
        tested=hm.tested,
        fails=hm.fails,
        matrix=hm.matrix,
    )
