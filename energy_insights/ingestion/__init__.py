"""Offline batch ingestion of plant generation data."""

from .reader import PlantRecord, read_source, parse_plant_sheet, parse_generation
from .transform import combine_duplicates, aggregate_by_state, top_states
from .pipeline import IngestionPipeline, IngestionResult

__all__ = [
    "PlantRecord",
    "read_source",
    "parse_plant_sheet",
    "parse_generation",
    "combine_duplicates",
    "aggregate_by_state",
    "top_states",
    "IngestionPipeline",
    "IngestionResult",
]
