from __future__ import annotations

from dataclasses import is_dataclass
from typing import Any, Optional

from fastapi import APIRouter, Depends, Query

from linesight.dependencies import get_reader
from linesight.schemas.common import CtqOut, FixtureOut, LotOut, StepOut
from linesight.schemas.episodes import EpisodeDetailOut, EpisodeListItem, EpisodeListOut
from linesight.services.episodes import EpisodeService, trim_summary

router = APIRouter(prefix="/episodes", tags=["Episodes"])


def _resolved(value: Any, model) -> Any:
    """Resolved definitions as response models; a raw stored payload passes through."""
    if isinstance(value, list) and value and all(is_dataclass(x) for x in value):
        return [model.model_validate(x).model_dump(mode="json") for x in value]
    return value


@router.get("", response_model=EpisodeListOut)
def list_episodes(
    status: Optional[str] = Query(None, description="OPEN / MONITORING / CLOSED"),
    category: Optional[str] = Query(None, description="Root-cause category"),
    q: Optional[str] = Query(None, description="Search title and summary"),
    reader=Depends(get_reader),
):
    episodes = EpisodeService(reader).list(status=status, category=category, search=q)
    return EpisodeListOut(
        episodes=[
            EpisodeListItem(
                id=ep.id,
                title=ep.title,
                summary=trim_summary(ep.summary),
                status=ep.status,
                root_cause_category=ep.root_cause_category,
                effectiveness_tag=ep.effectiveness_tag,
                started_at=ep.started_at,
                ended_at=ep.ended_at,
                created_at=ep.created_at,
                updated_at=ep.updated_at,
            )
            for ep in episodes
        ]
    )


@router.get("/{episode_id}", response_model=EpisodeDetailOut)
def get_episode(episode_id: int, reader=Depends(get_reader)):
    detail = EpisodeService(reader).detail(episode_id)
    ep = detail.episode
    return EpisodeDetailOut(
        id=ep.id,
        title=ep.title,
        summary=ep.summary,
        status=ep.status,
        root_cause_category=ep.root_cause_category,
        effectiveness_tag=ep.effectiveness_tag,
        started_at=ep.started_at,
        ended_at=ep.ended_at,
        created_at=ep.created_at,
        updated_at=ep.updated_at,
        affected_steps=_resolved(detail.affected_steps, StepOut),
        affected_ctqs=_resolved(detail.affected_ctqs, CtqOut),
        affected_lots=_resolved(detail.affected_lots, LotOut),
        affected_fixtures=_resolved(detail.affected_fixtures, FixtureOut),
        before_metrics=ep.before_metrics,
        after_metrics=ep.after_metrics,
        external_links=ep.external_links,
    )
