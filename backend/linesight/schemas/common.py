# linesight/schemas/common.py
from __future__ import annotations

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict


# ---------- Reference data ----------
class StepOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    code: str
    name: str
    sequence: int
    step_type: str
    can_scrap: bool = False


class CtqOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    code: str
    name: str
    step_id: Optional[int] = None
    direction: str
    lower_spec_limit: Optional[float] = None
    upper_spec_limit: Optional[float] = None
    target: Optional[float] = None
    units: str = ""
    is_critical: bool = False


class LotOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    lot_number: str
    component_name: str = ""
    supplier: Optional[str] = None
    received_at: Optional[datetime] = None


class FixtureOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    code: str
    fixture_type: Optional[str] = None
    station_code: Optional[str] = None
    status: Optional[str] = None
    last_calibrated_at: Optional[datetime] = None
