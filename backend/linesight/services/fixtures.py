# linesight/services/fixtures.py
"""
Fixture health: usage, failure correlation and calibration age.

    BAD   failure rate > 0.10 or calibration older than 90 days
    WARN  failure rate > 0.05
    GOOD  otherwise

Calibration age is measured against the newest execution timestamp so a
replayed snapshot reports what it reported at the time.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Iterable, List, Optional

from linesight.domain import Episode, Execution, Fixture
from linesight.services.episode_payloads import STEP, episode_fixture_ids, extract_ids
from linesight.services.first_pass import is_failure
from linesight.services.lots import HEALTH_BAD, HEALTH_GOOD, HEALTH_WARN
from linesight.services.ordering import as_utc
from linesight.services.yields import ratio

logger = logging.getLogger(__name__)

CALIBRATION_MAX_AGE = timedelta(days=90)
BAD_FAILURE_RATE = 0.10
WARN_FAILURE_RATE = 0.05


@dataclass(frozen=True)
class FixtureSummary:
    fixture: Fixture
    usage_count: int
    correlated_failure_rate: float
    episode_count: int
    calibration_overdue: bool
    health: str


def calibration_overdue(fixture: Fixture, anchor: Optional[datetime]) -> bool:
    calibrated = as_utc(fixture.last_calibrated_at)
    if calibrated is None or anchor is None:
        return False
    return as_utc(anchor) - calibrated > CALIBRATION_MAX_AGE


def fixture_health(failure_rate: float, overdue: bool) -> str:
    if failure_rate > BAD_FAILURE_RATE or overdue:
        return HEALTH_BAD
    if failure_rate > WARN_FAILURE_RATE:
        return HEALTH_WARN
    return HEALTH_GOOD


def episode_touches_fixture(episode: Episode, fixture: Fixture, step_ids: Iterable[int]) -> bool:
    """Named explicitly, or the episode's steps overlap the steps the fixture served."""
    if fixture.id in episode_fixture_ids(episode):
        return True
    return bool(extract_ids(episode.affected_steps, STEP) & set(step_ids))


def summarize_fixtures(
    fixtures: Iterable[Fixture],
    executions: Iterable[Execution],
    episodes: Iterable[Episode],
    anchor: Optional[datetime],
) -> List[FixtureSummary]:
    by_fixture = {}
    for e in executions:
        if e.fixture_id is not None:
            by_fixture.setdefault(e.fixture_id, []).append(e)
    episode_list = list(episodes)

    out: List[FixtureSummary] = []
    for fx in fixtures:
        used = by_fixture.get(fx.id, [])
        failure_rate = ratio(sum(1 for e in used if is_failure(e)), len(used))
        steps_served = {e.step_id for e in used}
        overdue = calibration_overdue(fx, anchor)
        out.append(
            FixtureSummary(
                fixture=fx,
                usage_count=len(used),
                correlated_failure_rate=failure_rate,
                episode_count=sum(1 for ep in episode_list if episode_touches_fixture(ep, fx, steps_served)),
                calibration_overdue=overdue,
                health=fixture_health(failure_rate, overdue),
            )
        )
    out.sort(key=lambda s: (-s.correlated_failure_rate, s.fixture.code))
    return out


class FixtureService:
    def __init__(self, reader) -> None:
        self.reader = reader

    def summaries(self) -> List[FixtureSummary]:
        fixtures = self.reader.fetch_fixtures()
        if not fixtures:
            return []
        executions = self.reader.fetch_executions(fixture_ids=[f.id for f in fixtures])
        anchor = self.reader.fetch_latest_execution_time()
        result = summarize_fixtures(fixtures, executions, self.reader.fetch_episodes(), anchor)
        logger.debug("fixture health: %d fixtures, %d executions", len(result), len(executions))
        return result
