# linesight/services/similarity.py
"""
Rank past episodes against a query context by weighted id overlap.

    score = 5*CTQ + 3*step + 2*lot + 1.5*fixture + 1*failure code

Overlaps are set intersections, failure codes compared case-insensitively.
Zero scores are dropped; ties go to the more recent episode.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import FrozenSet, Iterable, List, Optional

from linesight.domain import Episode
from linesight.services.episode_payloads import EpisodeFootprint, episode_footprint, normalize_code
from linesight.services.ordering import EPOCH, as_utc

logger = logging.getLogger(__name__)

CTQ_WEIGHT = 5.0
STEP_WEIGHT = 3.0
LOT_WEIGHT = 2.0
FIXTURE_WEIGHT = 1.5
FAILURE_CODE_WEIGHT = 1.0

DEFAULT_LIMIT = 5
DEFAULT_REASON = "Pattern overlap detected."


@dataclass(frozen=True)
class SimilarityQuery:
    step_ids: FrozenSet[int] = frozenset()
    ctq_ids: FrozenSet[int] = frozenset()
    lot_ids: FrozenSet[int] = frozenset()
    fixture_ids: FrozenSet[int] = frozenset()
    failure_codes: FrozenSet[str] = frozenset()

    @classmethod
    def build(
        cls,
        step_ids: Iterable[int] = (),
        ctq_ids: Iterable[int] = (),
        lot_ids: Iterable[int] = (),
        fixture_ids: Iterable[int] = (),
        failure_codes: Iterable[str] = (),
    ) -> "SimilarityQuery":
        return cls(
            step_ids=frozenset(step_ids),
            ctq_ids=frozenset(ctq_ids),
            lot_ids=frozenset(lot_ids),
            fixture_ids=frozenset(fixture_ids),
            failure_codes=frozenset(c for c in (normalize_code(x) for x in failure_codes) if c),
        )

    @property
    def is_empty(self) -> bool:
        return not (self.step_ids or self.ctq_ids or self.lot_ids or self.fixture_ids or self.failure_codes)


@dataclass(frozen=True)
class EpisodeMatch:
    episode: Episode
    score: float
    ctq_overlap: int = 0
    step_overlap: int = 0
    lot_overlap: int = 0
    fixture_overlap: int = 0
    failure_code_overlap: int = 0
    reasons: List[str] = field(default_factory=list)

    @property
    def why(self) -> str:
        return " · ".join(self.reasons) if self.reasons else DEFAULT_REASON


def episode_start(episode: Episode) -> datetime:
    return as_utc(episode.started_at or episode.created_at) or EPOCH


def score_footprint(query: SimilarityQuery, episode: Episode, footprint: EpisodeFootprint) -> EpisodeMatch:
    ctq = len(query.ctq_ids & footprint.ctq_ids)
    step = len(query.step_ids & footprint.step_ids)
    lot = len(query.lot_ids & footprint.lot_ids)
    fixture = len(query.fixture_ids & footprint.fixture_ids)
    codes = len(query.failure_codes & footprint.failure_codes)

    reasons: List[str] = []
    if ctq:
        reasons.append("CTQ drift overlap")
    if step:
        reasons.append("Station/step overlap")
    if lot:
        reasons.append("Lot overlap")
    if fixture:
        reasons.append("Fixture overlap")
    if codes:
        reasons.append("Failure code overlap")

    score = (
        CTQ_WEIGHT * ctq
        + STEP_WEIGHT * step
        + LOT_WEIGHT * lot
        + FIXTURE_WEIGHT * fixture
        + FAILURE_CODE_WEIGHT * codes
    )
    return EpisodeMatch(
        episode=episode,
        score=round(score, 2),
        ctq_overlap=ctq,
        step_overlap=step,
        lot_overlap=lot,
        fixture_overlap=fixture,
        failure_code_overlap=codes,
        reasons=reasons,
    )


def score_episode(query: SimilarityQuery, episode: Episode) -> EpisodeMatch:
    return score_footprint(query, episode, episode_footprint(episode))


def rank_similar_episodes(
    query: SimilarityQuery,
    episodes: Iterable[Episode],
    limit: Optional[int] = DEFAULT_LIMIT,
) -> List[EpisodeMatch]:
    if query.is_empty:
        return []
    matches = [m for m in (score_episode(query, ep) for ep in episodes) if m.score > 0]
    # id as last key keeps equal-score, equal-time results stable across pool order
    matches.sort(key=lambda m: (-m.score, -episode_start(m.episode).timestamp(), m.episode.id))
    if limit is not None:
        matches = matches[: max(limit, 0)]
    logger.debug("similarity: %d match(es) returned", len(matches))
    return matches


class SimilarityService:
    def __init__(self, reader) -> None:
        self.reader = reader

    def rank(self, query: SimilarityQuery, limit: Optional[int] = DEFAULT_LIMIT) -> List[EpisodeMatch]:
        if query.is_empty:
            return []
        return rank_similar_episodes(query, self.reader.fetch_episodes(), limit=limit)
