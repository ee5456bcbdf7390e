"""
Query parameter models.

Every public query goes through one of these models before the cache or the
store is touched. Pydantic does the range/shape checks; `validate_params`
turns the first failure into a ValidationFailedError that names the
parameter and the constraint it broke.
"""

from typing import Annotated, Any, List, Optional, Type, TypeVar

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from energy_insights.errors import ValidationFailedError


MIN_TOP = 1
MAX_TOP = 100
MIN_YEAR = 1900
MAX_YEAR = 2100
STATE_CODE_PATTERN = r"^[A-Z]{2}$"

M = TypeVar("M", bound=BaseModel)


class _QueryModel(BaseModel):
    model_config = ConfigDict(extra="forbid", strict=True)


class TopPlantsQuery(_QueryModel):
    """Parameters for the top-N plants query."""
    top: int = Field(default=10, ge=MIN_TOP, le=MAX_TOP)
    state: Optional[str] = Field(default=None, pattern=STATE_CODE_PATTERN)
    year: Optional[int] = Field(default=None, ge=MIN_YEAR, le=MAX_YEAR)


class StatesSummaryQuery(_QueryModel):
    """Parameters for the all-states summary."""
    year: int = Field(ge=MIN_YEAR, le=MAX_YEAR)


class StateDetailQuery(_QueryModel):
    """Parameters for a single state's detail."""
    code: str = Field(pattern=STATE_CODE_PATTERN)
    year: int = Field(ge=MIN_YEAR, le=MAX_YEAR)
    top_plants: int = Field(default=10, ge=MIN_TOP, le=MAX_TOP)


class PlantQuery(_QueryModel):
    """Parameters for a single plant lookup."""
    plant_id: int = Field(ge=1)


Year = Annotated[int, Field(ge=MIN_YEAR, le=MAX_YEAR)]


class ReconcileQuery(_QueryModel):
    """Years to warm first after a reload."""
    priority_years: Optional[List[Year]] = None


_CONSTRAINT_MESSAGES = {
    "greater_than_equal": "must be >= {ge}",
    "less_than_equal": "must be <= {le}",
    "string_pattern_mismatch": "must be 2 uppercase letters (e.g., TX, CA, FL)",
    "int_type": "must be an integer",
    "int_parsing": "must be an integer",
    "string_type": "must be a string",
    "missing": "is required",
    "extra_forbidden": "is not a recognized parameter",
}


def _describe(error: dict) -> str:
    template = _CONSTRAINT_MESSAGES.get(error.get("type", ""))
    if template is None:
        return error.get("msg", "is invalid")
    try:
        return template.format(**(error.get("ctx") or {}))
    except KeyError:
        return error.get("msg", "is invalid")


def validate_params(model: Type[M], **params: Any) -> M:
    """
    Validate raw parameters against a query model.

    Parameters passed as None are treated as absent so model defaults apply.

    Raises:
        ValidationFailedError: naming the first failing parameter.
    """
    provided = {k: v for k, v in params.items() if v is not None}
    try:
        return model(**provided)
    except ValidationError as e:
        first = e.errors()[0]
        loc = first.get("loc") or ("?",)
        parameter = str(loc[0])
        raise ValidationFailedError(
            parameter=parameter,
            constraint=_describe(first),
            value=provided.get(parameter),
        ) from e
