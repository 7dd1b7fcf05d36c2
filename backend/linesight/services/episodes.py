# linesight/services/episodes.py
"""Episode catalog: filtered listing and resolved detail."""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, List, Optional

from linesight.domain import ComponentLot, CtqDefinition, Episode, Fixture, StepDefinition
from linesight.errors import NotFoundError
from linesight.services.episode_payloads import CTQ, LOT, STEP, episode_fixture_ids, extract_ids
from linesight.services.ordering import EPOCH, as_utc

SUMMARY_MAX = 200


def trim_summary(text: Optional[str], max_length: int = SUMMARY_MAX) -> str:
    text = text or ""
    if len(text) <= max_length:
        return text
    return text[: max_length - 1] + "…"


def _newest_first(ep: Episode):
    return (as_utc(ep.started_at) or EPOCH, as_utc(ep.created_at) or EPOCH, ep.id)


@dataclass(frozen=True)
class EpisodeDetail:
    episode: Episode
    steps: List[StepDefinition] = field(default_factory=list)
    ctqs: List[CtqDefinition] = field(default_factory=list)
    lots: List[ComponentLot] = field(default_factory=list)
    fixtures: List[Fixture] = field(default_factory=list)

    # Fall back to the raw payload when nothing resolved.
    @property
    def affected_steps(self) -> Any:
        return self.steps or self.episode.affected_steps

    @property
    def affected_ctqs(self) -> Any:
        return self.ctqs or self.episode.affected_ctqs

    @property
    def affected_lots(self) -> Any:
        return self.lots or self.episode.affected_lots

    @property
    def affected_fixtures(self) -> Any:
        return self.fixtures or self.episode.affected_fixtures


class EpisodeService:
    def __init__(self, reader) -> None:
        self.reader = reader

    def list(
        self,
        status: Optional[str] = None,
        category: Optional[str] = None,
        search: Optional[str] = None,
    ) -> List[Episode]:
        found = self.reader.fetch_episodes(status=status, category=category, search=search)
        return sorted(found, key=_newest_first, reverse=True)

    def detail(self, episode_id: int) -> EpisodeDetail:
        ep = self.reader.fetch_episode(episode_id)
        if ep is None:
            raise NotFoundError("episode", episode_id)

        step_ids = extract_ids(ep.affected_steps, STEP)
        ctq_ids = extract_ids(ep.affected_ctqs, CTQ)
        lot_ids = extract_ids(ep.affected_lots, LOT)
        fixture_ids = episode_fixture_ids(ep)

        steps = [s for s in self.reader.fetch_steps() if s.id in step_ids] if step_ids else []
        return EpisodeDetail(
            episode=ep,
            steps=sorted(steps, key=lambda s: (s.sequence, s.id)),
            ctqs=self.reader.fetch_ctqs(ctq_ids=sorted(ctq_ids)) if ctq_ids else [],
            lots=self.reader.fetch_lots(lot_ids=sorted(lot_ids)) if lot_ids else [],
            fixtures=self.reader.fetch_fixtures(fixture_ids=sorted(fixture_ids)) if fixture_ids else [],
        )
