"""
Exception hierarchy for querykit.

Two families of errors exist:

- QueryValidationError and its subclasses: the request itself cannot be
  expressed (bad grammar, unconvertible value, out-of-range page). Callers
  typically map these to a "bad request" response.
- ObjectNotFoundError: a single-entity lookup found nothing.

Resolution misses (unknown property names) are never errors; the offending
clause is dropped instead.
"""
from typing import Any, Optional


class QueryKitError(Exception):
    """Base class for all querykit errors."""
    pass


class QueryValidationError(QueryKitError):
    """A query parameter is invalid."""

    def __init__(self, message: str, parameter: Optional[str] = None):
        super().__init__(message)
        self.parameter = parameter


class ParseError(QueryValidationError):
    """A filter, sort or graph expression does not follow the grammar."""

    def __init__(self, message: str, clause: Optional[str] = None,
                 parameter: Optional[str] = None):
        super().__init__(message, parameter=parameter)
        self.clause = clause


class CoercionError(QueryValidationError):
    """A filter value cannot be converted to the target field type."""

    def __init__(self, value: str, target_type: Any, reason: Optional[str] = None):
        type_name = getattr(target_type, "__name__", repr(target_type))
        message = f"Cannot convert {value!r} to {type_name}"
        if reason:
            message = f"{message}: {reason}"
        super().__init__(message, parameter="filter")
        self.value = value
        self.target_type = target_type


class ObjectNotFoundError(QueryKitError):
    """Lookup by identifier found no entity."""

    def __init__(self, message: str = "Object Not Found"):
        super().__init__(message)
