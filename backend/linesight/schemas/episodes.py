# linesight/schemas/episodes.py
from __future__ import annotations

from datetime import datetime
from typing import Any, List, Optional

from pydantic import BaseModel, Field


class EpisodeListItem(BaseModel):
    id: int
    title: str
    summary: str                       # trimmed to 200 chars
    status: str
    root_cause_category: str
    effectiveness_tag: Optional[str] = None
    started_at: Optional[datetime] = None
    ended_at: Optional[datetime] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class EpisodeListOut(BaseModel):
    episodes: List[EpisodeListItem]


class EpisodeDetailOut(BaseModel):
    id: int
    title: str
    summary: str
    status: str
    root_cause_category: str
    effectiveness_tag: Optional[str] = None
    started_at: Optional[datetime] = None
    ended_at: Optional[datetime] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    # Resolved definitions when ids resolve, otherwise the stored payload
    affected_steps: Any = None
    affected_ctqs: Any = None
    affected_lots: Any = None
    affected_fixtures: Any = None
    before_metrics: Any = None
    after_metrics: Any = None
    external_links: Any = None


# ---------- /similarity ----------
class AffectedStep(BaseModel):
    step_id: int
    delta_fpy: Optional[float] = None


class AffectedCtq(BaseModel):
    ctq_id: int
    direction: Optional[str] = None    # "up" / "down"; informational


class SimilarityRequest(BaseModel):
    affected_steps: List[AffectedStep] = Field(default_factory=list)
    affected_ctqs: List[AffectedCtq] = Field(default_factory=list)
    lots: List[int] = Field(default_factory=list)
    fixtures: List[int] = Field(default_factory=list)
    failure_codes: List[str] = Field(default_factory=list)


class SimilarEpisodeOut(BaseModel):
    id: int
    title: str
    status: str
    root_cause_category: str
    effectiveness_tag: Optional[str] = None
    score: float
    started_at: Optional[datetime] = None
    ended_at: Optional[datetime] = None
    reasons: List[str] = Field(default_factory=list)
    why: str


class SimilarityOut(BaseModel):
    results: List[SimilarEpisodeOut]
