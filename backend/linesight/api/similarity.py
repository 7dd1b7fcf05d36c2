from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends, Query

from linesight.config import get_settings
from linesight.dependencies import get_reader
from linesight.schemas.episodes import SimilarEpisodeOut, SimilarityOut, SimilarityRequest
from linesight.services.similarity import EpisodeMatch, SimilarityQuery, SimilarityService

router = APIRouter(tags=["Similarity"])


def match_out(m: EpisodeMatch) -> SimilarEpisodeOut:
    ep = m.episode
    return SimilarEpisodeOut(
        id=ep.id,
        title=ep.title,
        status=ep.status,
        root_cause_category=ep.root_cause_category,
        effectiveness_tag=ep.effectiveness_tag,
        score=m.score,
        started_at=ep.started_at,
        ended_at=ep.ended_at,
        reasons=list(m.reasons),
        why=m.why,
    )


@router.post("/similarity", response_model=SimilarityOut)
def similar_episodes(
    payload: SimilarityRequest,
    limit: Optional[int] = Query(None, ge=1, le=50),
    reader=Depends(get_reader),
):
    """Past episodes ranked by overlap with the given context; empty context returns nothing."""
    query = SimilarityQuery.build(
        step_ids=[s.step_id for s in payload.affected_steps],
        ctq_ids=[c.ctq_id for c in payload.affected_ctqs],
        lot_ids=payload.lots,
        fixture_ids=payload.fixtures,
        failure_codes=payload.failure_codes,
    )
    top_n = limit if limit is not None else get_settings().similarity_top_n
    matches = SimilarityService(reader).rank(query, limit=top_n)
    return SimilarityOut(results=[match_out(m) for m in matches])
