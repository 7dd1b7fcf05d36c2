# linesight/domain.py
"""
Engine-side entities.

Readers translate whatever the store returns into these frozen dataclasses;
every service in `linesight.services` consumes them and nothing else. None of
them is ever mutated by the engine.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Optional, Tuple


# ---------- Enums (align with upstream DB enums) ----------
class ExecutionResult(str, Enum):
    PASS = "PASS"
    FAIL = "FAIL"
    SCRAP = "SCRAP"


class CTQDirection(str, Enum):
    TWO_SIDED = "TWO_SIDED"
    HIGHER_BETTER = "HIGHER_BETTER"
    LOWER_BETTER = "LOWER_BETTER"


class StepType(str, Enum):
    ASSEMBLY = "ASSEMBLY"
    TEST = "TEST"
    INSPECTION = "INSPECTION"
    DEBUG = "DEBUG"


class EpisodeStatus(str, Enum):
    OPEN = "OPEN"
    MONITORING = "MONITORING"
    CLOSED = "CLOSED"


class RootCauseCategory(str, Enum):
    SUPPLIER = "SUPPLIER"
    FIXTURE = "FIXTURE"
    PROCESS = "PROCESS"
    DESIGN = "DESIGN"
    OPERATOR = "OPERATOR"
    OTHER = "OTHER"


# ---------- Reference data ----------
@dataclass(frozen=True)
class StepDefinition:
    id: int
    code: str
    name: str
    sequence: int
    step_type: str = StepType.ASSEMBLY.value
    can_scrap: bool = False

    @property
    def is_debug(self) -> bool:
        return str(self.step_type).upper() == StepType.DEBUG.value


@dataclass(frozen=True)
class CtqDefinition:
    id: int
    code: str
    name: str
    step_id: Optional[int]
    direction: str
    lower_spec_limit: Optional[float] = None
    upper_spec_limit: Optional[float] = None
    target: Optional[float] = None
    units: str = ""
    is_critical: bool = False


@dataclass(frozen=True)
class ComponentLot:
    id: int
    lot_number: str
    component_name: str = ""
    supplier: Optional[str] = None
    received_at: Optional[datetime] = None


@dataclass(frozen=True)
class Fixture:
    id: int
    code: str
    fixture_type: Optional[str] = None
    station_code: Optional[str] = None
    status: Optional[str] = None
    last_calibrated_at: Optional[datetime] = None


# ---------- Production records ----------
@dataclass(frozen=True)
class Unit:
    id: int
    serial: str
    created_at: Optional[datetime] = None
    final_result: Optional[str] = None
    kit_id: Optional[int] = None
    lot_ids: Tuple[int, ...] = ()


@dataclass(frozen=True)
class Execution:
    id: int
    unit_id: int
    step_id: int
    result: str
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    rework_loop_id: Optional[str] = None
    origin_step_id: Optional[int] = None
    station_code: Optional[str] = None
    fixture_id: Optional[int] = None
    fixture_code: Optional[str] = None
    failure_code: Optional[str] = None
    step_code: Optional[str] = None


@dataclass(frozen=True)
class Measurement:
    id: int
    execution_id: int
    ctq_id: int
    value: float
    recorded_at: Optional[datetime] = None
    ctq: Optional[CtqDefinition] = None


# ---------- Investigations ----------
@dataclass(frozen=True)
class Episode:
    id: int
    title: str
    summary: str = ""
    status: str = EpisodeStatus.OPEN.value
    root_cause_category: str = RootCauseCategory.OTHER.value
    effectiveness_tag: Optional[str] = None
    started_at: Optional[datetime] = None
    ended_at: Optional[datetime] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    # Loosely-typed JSON payloads; see services/episode_payloads.py
    affected_steps: Any = None
    affected_ctqs: Any = None
    affected_lots: Any = None
    affected_fixtures: Any = None
    before_metrics: Any = None
    after_metrics: Any = None
    external_links: Any = field(default=None, compare=False)


def enum_value(value: Any) -> str:
    """Uppercase string for an ORM enum member or a raw string."""
    if value is None:
        return ""
    if hasattr(value, "value"):
        return str(value.value).upper()
    return str(value).upper()
