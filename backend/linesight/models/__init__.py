# linesight/models/__init__.py
"""
Central model registry.

Read-only mappings of the tables the ingestion service owns. Import this once
(the reader does) so SQLAlchemy sees every mapped class before the first query.
"""
from linesight.db import Base  # re-export Base

from .production import ComponentLot, Kit, KitComponentLot, Unit  # noqa: F401
from .process import (  # noqa: F401
    CTQDefinition,
    Fixture,
    Measurement,
    ProcessStepDefinition,
    ProcessStepExecution,
)
from .episode import Episode  # noqa: F401

__all__ = [
    "Base",
    "ComponentLot",
    "Kit",
    "KitComponentLot",
    "Unit",
    "CTQDefinition",
    "Fixture",
    "Measurement",
    "ProcessStepDefinition",
    "ProcessStepExecution",
    "Episode",
]
