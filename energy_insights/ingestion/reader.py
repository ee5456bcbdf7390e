"""
Source readers for the ingestion job.

Two formats are accepted:
- the eGRID plant workbook (.xlsx), one sheet per data year, with a few
  title rows above the header and a row of field codes under it
- a JSON export: a list of {plantName, stateCode, netGeneration, year?}
"""

import json
import logging
import re
from dataclasses import dataclass
from pathlib import Path
from typing import Any, List, Optional

import pandas as pd

from energy_insights.errors import IngestionError

logger = logging.getLogger(__name__)

DEFAULT_SHEET = "PLNT23"

NAME_HEADER = "Plant name"
STATE_HEADER = "Plant state abbreviation"
GENERATION_HEADER = "Plant annual net generation (MWh)"

# eGRID repeats the field codes in the row right below the labels
CODE_ROW_MARKERS = {"PNAME", "PSTATABB"}

STATE_CODE = re.compile(r"^[A-Z]{2}$")


@dataclass(frozen=True)
class PlantRecord:
    plant_name: str
    state_code: str
    net_generation: float
    year: Optional[int] = None


def parse_generation(value: Any) -> float:
    """Numeric generation value; blanks and garbage become 0."""
    if value is None:
        return 0.0
    if isinstance(value, str):
        value = value.replace(",", "").strip()
        if not value:
            return 0.0
    try:
        parsed = float(value)
    except (TypeError, ValueError):
        return 0.0
    return 0.0 if pd.isna(parsed) else parsed


def _cell_text(value: Any) -> str:
    if value is None or (not isinstance(value, str) and pd.isna(value)):
        return ""
    return str(value).strip()


def _find_header(frame: pd.DataFrame):
    for row_index, row in enumerate(frame.itertuples(index=False, name=None)):
        labels = [_cell_text(v) for v in row]
        if NAME_HEADER in labels and STATE_HEADER in labels:
            generation_col = labels.index(GENERATION_HEADER) if GENERATION_HEADER in labels else None
            return row_index, labels.index(NAME_HEADER), labels.index(STATE_HEADER), generation_col
    raise IngestionError(
        f"Could not find '{NAME_HEADER}' and '{STATE_HEADER}' columns in the plant sheet"
    )


def parse_plant_sheet(frame: pd.DataFrame) -> List[PlantRecord]:
    """
    Extract plant records from a raw (header=None) sheet.

    The header row is located by its labels. Rows missing a name or state,
    and the field-code row, are skipped.
    """
    header_row, name_col, state_col, generation_col = _find_header(frame)
    logger.info(
        f"Found header row at row {header_row + 1} "
        f"(name col {name_col}, state col {state_col}, generation col {generation_col})"
    )
    if generation_col is None:
        logger.warning(f"'{GENERATION_HEADER}' column missing, generation will be 0")

    records: List[PlantRecord] = []
    skipped = 0
    for row in frame.iloc[header_row + 1:].itertuples(index=False, name=None):
        name = _cell_text(row[name_col])
        state = _cell_text(row[state_col]).upper()

        if not name or not state or name in CODE_ROW_MARKERS or state in CODE_ROW_MARKERS:
            skipped += 1
            continue
        if not STATE_CODE.match(state):
            logger.debug(f"Skipping plant {name!r} with invalid state code {state!r}")
            skipped += 1
            continue

        generation = parse_generation(row[generation_col]) if generation_col is not None else 0.0
        records.append(PlantRecord(plant_name=name, state_code=state, net_generation=generation))

    logger.info(f"Skipped {skipped} rows (empty or invalid)")
    logger.info(f"Successfully parsed {len(records)} plant records")
    return records


def read_egrid_workbook(path: Path, sheet: str = DEFAULT_SHEET) -> List[PlantRecord]:
    """Read the plant sheet of an eGRID workbook."""
    try:
        frame = pd.read_excel(path, sheet_name=sheet, header=None, dtype=object)
    except ValueError as e:
        # pandas reports a missing worksheet as ValueError
        raise IngestionError(f"Worksheet {sheet} not found in {path}: {e}") from e
    logger.info(f"Reading sheet {sheet} with {len(frame)} rows from {path}")
    return parse_plant_sheet(frame)


def read_json_export(path: Path) -> List[PlantRecord]:
    """Read a JSON list of plant records."""
    try:
        payload = json.loads(Path(path).read_text(encoding="utf-8"))
    except json.JSONDecodeError as e:
        raise IngestionError(f"Invalid JSON in {path}: {e}") from e
    if not isinstance(payload, list):
        raise IngestionError(f"Expected a JSON list of plant records in {path}")

    records = []
    for item in payload:
        if not isinstance(item, dict):
            continue
        name = _cell_text(item.get("plantName"))
        state = _cell_text(item.get("stateCode")).upper()
        if not name or not STATE_CODE.match(state):
            continue
        year = item.get("year")
        records.append(PlantRecord(
            plant_name=name,
            state_code=state,
            net_generation=parse_generation(item.get("netGeneration")),
            year=int(year) if year is not None else None,
        ))
    logger.info(f"Parsed {len(records)} plant records from {path}")
    return records


def read_source(path: Path, sheet: str = DEFAULT_SHEET) -> List[PlantRecord]:
    """Dispatch on file extension."""
    path = Path(path)
    if not path.exists():
        raise IngestionError(f"Source file not found: {path}")

    suffix = path.suffix.lower()
    if suffix in (".xlsx", ".xlsm"):
        return read_egrid_workbook(path, sheet)
    if suffix == ".json":
        return read_json_export(path)
    raise IngestionError(f"Unsupported source format: {suffix}")
