"""Relational store: models, connection handle and storage access."""

from .models import Base, State, Plant, PlantGeneration, state_generation_mv, STATE_GENERATION_VIEW
from .session import Database, normalize_database_url
from .repository import (
    GenerationStore,
    SqlGenerationStore,
    StateRow,
    GenerationRow,
    StateTotalRow,
    YearGeneration,
    PlantHistory,
)

__all__ = [
    "Base",
    "State",
    "Plant",
    "PlantGeneration",
    "state_generation_mv",
    "STATE_GENERATION_VIEW",
    "Database",
    "normalize_database_url",
    "GenerationStore",
    "SqlGenerationStore",
    "StateRow",
    "GenerationRow",
    "StateTotalRow",
    "YearGeneration",
    "PlantHistory",
]
