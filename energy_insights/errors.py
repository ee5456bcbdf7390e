"""
Error taxonomy shared by the query, cache and ingestion layers.

Callers only ever see a small closed set of kinds:
- NOT_FOUND: unknown state, unknown plant, or no aggregate row for a state/year
- VALIDATION_FAILED: a parameter outside its allowed range or shape
- UPSTREAM: the relational store could not be read or written

Cache failures never surface here; the cache layer degrades to a no-op instead.
"""

import enum
from typing import Any, Dict, Optional


class ErrorKind(enum.Enum):
    """Kinds of errors exposed to the API boundary."""
    NOT_FOUND = "not_found"
    VALIDATION_FAILED = "validation_failed"
    UPSTREAM = "upstream"


class InsightsError(Exception):
    """Base class for errors raised by the core."""

    kind: ErrorKind = ErrorKind.UPSTREAM

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_dict(self) -> Dict[str, Any]:
        return {
            "kind": self.kind.value,
            "message": self.message,
            "details": self.details,
        }


class NotFoundError(InsightsError):
    """Requested entity (or state/year aggregate) does not exist."""

    kind = ErrorKind.NOT_FOUND


class ValidationFailedError(InsightsError):
    """A query parameter failed validation before any store call was made."""

    kind = ErrorKind.VALIDATION_FAILED

    def __init__(self, parameter: str, constraint: str, value: Any = None):
        super().__init__(
            f"Invalid parameter '{parameter}': {constraint}",
            details={"parameter": parameter, "constraint": constraint, "value": value},
        )
        self.parameter = parameter
        self.constraint = constraint
        self.value = value


class UpstreamError(InsightsError):
    """Relational store unreachable or a query failed."""

    kind = ErrorKind.UPSTREAM


class AggregateRefreshError(UpstreamError):
    """The state generation aggregate view could not be refreshed."""


class IngestionError(Exception):
    """Bulk load failed; the transaction was rolled back."""


class IngestionTimeoutError(IngestionError):
    """Bulk load exceeded its transaction time budget and was rolled back."""
