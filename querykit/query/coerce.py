"""
Conversion of raw filter values to field types.

Common types have dedicated parsers; any other type gets a converter that
is discovered once and kept in a ConverterCache:

- Enum subclasses: member name (case-insensitive), then member value
- classes with a ``from_string`` classmethod
- anything else: the type's constructor called with the raw string

Every failure surfaces as CoercionError; a value is never guessed.
"""

import logging
import re
import threading
import types
import typing
import uuid
from datetime import date, datetime, time, timedelta
from decimal import Decimal, InvalidOperation
from enum import Enum
from typing import Any, Callable, Dict, Optional

from querykit.exceptions import CoercionError

logger = logging.getLogger(__name__)

Converter = Callable[[str], Any]

_INT_RE = re.compile(r'^[+-]?[0-9]+$')
_CLOCK_DURATION_RE = re.compile(
    r'^(?P<sign>-)?(?:(?P<days>\d+)\.)?(?P<hours>\d{1,2}):(?P<minutes>\d{2})'
    r'(?::(?P<seconds>\d{2})(?:\.(?P<fraction>\d{1,7}))?)?$'
)
_UNIT_DURATION_RE = re.compile(r'^(\d+)\s*(week|day|hour|minute|second)s?$', re.I)

_DATE_FORMATS = ['%Y-%m-%d', '%Y/%m/%d', '%d-%m-%Y', '%d/%m/%Y']

_UNION_ORIGINS = (typing.Union, getattr(types, 'UnionType', typing.Union))


def is_union_type(target_type: Any) -> bool:
    """Whether target_type is Union[...] (or X | Y)."""
    return typing.get_origin(target_type) in _UNION_ORIGINS


# =============================================================================
# Parsers
# =============================================================================

def _reject_underscores(raw: str) -> str:
    if '_' in raw:
        raise ValueError("digit separators are not allowed")
    return raw.strip()


def parse_int(raw: str) -> int:
    s = raw.strip()
    if not _INT_RE.match(s):
        raise ValueError("not an integer")
    return int(s)


def parse_float(raw: str) -> float:
    return float(_reject_underscores(raw))


def parse_decimal(raw: str) -> Decimal:
    try:
        return Decimal(_reject_underscores(raw))
    except InvalidOperation:
        raise ValueError("not a decimal number")


def parse_bool(raw: str) -> bool:
    s = raw.strip().lower()
    if s == 'true':
        return True
    if s == 'false':
        return False
    raise ValueError("expected 'true' or 'false'")


def parse_datetime(raw: str) -> datetime:
    """Parse ISO-8601 (offset and trailing 'Z' allowed) or a plain date."""
    s = raw.strip()
    if s[-1:] in ('Z', 'z'):
        s = s[:-1] + '+00:00'

    try:
        return datetime.fromisoformat(s)
    except ValueError:
        pass

    for fmt in _DATE_FORMATS:
        try:
            return datetime.strptime(s, fmt)
        except ValueError:
            continue

    raise ValueError("not an ISO-8601 date or date-time")


def parse_date(raw: str) -> date:
    s = raw.strip()
    try:
        return date.fromisoformat(s)
    except ValueError:
        pass

    for fmt in _DATE_FORMATS:
        try:
            return datetime.strptime(s, fmt).date()
        except ValueError:
            continue

    raise ValueError("not a date")


def parse_time(raw: str) -> time:
    return time.fromisoformat(raw.strip())


def parse_timedelta(raw: str) -> timedelta:
    """
    Parse a duration.

    Accepts clock notation, "[-][d.]hh:mm[:ss[.fffffff]]" ("1.02:30:00" is a
    day and two and a half hours), or a unit count ("3 days", "90 minutes").
    """
    s = raw.strip()

    match = _CLOCK_DURATION_RE.match(s)
    if match:
        fraction = (match.group('fraction') or '').ljust(6, '0')[:6]
        delta = timedelta(
            days=int(match.group('days') or 0),
            hours=int(match.group('hours')),
            minutes=int(match.group('minutes')),
            seconds=int(match.group('seconds') or 0),
            microseconds=int(fraction),
        )
        return -delta if match.group('sign') else delta

    match = _UNIT_DURATION_RE.match(s)
    if match:
        amount = int(match.group(1))
        unit = match.group(2).lower()
        return timedelta(**{f"{unit}s": amount})

    raise ValueError("not a duration")


def parse_uuid(raw: str) -> uuid.UUID:
    return uuid.UUID(raw.strip())


_FAST_PATHS: Dict[Any, Converter] = {
    int: parse_int,
    float: parse_float,
    Decimal: parse_decimal,
    bool: parse_bool,
    datetime: parse_datetime,
    date: parse_date,
    time: parse_time,
    timedelta: parse_timedelta,
    uuid.UUID: parse_uuid,
}


# =============================================================================
# Converter discovery
# =============================================================================

def _enum_converter(enum_type) -> Converter:
    by_name = {member.name.lower(): member for member in enum_type}

    def convert(raw: str):
        member = by_name.get(raw.strip().lower())
        if member is not None:
            return member
        for candidate in enum_type:
            if str(candidate.value) == raw:
                return candidate
        raise ValueError(f"not a member of {enum_type.__name__}")

    return convert


def build_converter(target_type: Any) -> Converter:
    """Discover how to convert a string into target_type."""
    if isinstance(target_type, type) and issubclass(target_type, Enum):
        return _enum_converter(target_type)

    from_string = getattr(target_type, 'from_string', None)
    if callable(from_string):
        return from_string

    if callable(target_type):
        return target_type

    raise TypeError(f"no conversion to {target_type!r}")


class ConverterCache:
    """
    Thread-safe cache of discovered converters, keyed by target type.

    Reads do not lock. A converter missing from the cache is built outside
    the lock and inserted only if absent, so concurrent first uses of a
    type all end up with the same converter.
    """

    def __init__(self, factory: Callable[[Any], Converter] = build_converter):
        self._factory = factory
        self._converters: Dict[Any, Converter] = {}
        self._lock = threading.Lock()

    def get(self, target_type: Any) -> Converter:
        converter = self._converters.get(target_type)
        if converter is not None:
            return converter

        built = self._factory(target_type)
        with self._lock:
            converter = self._converters.setdefault(target_type, built)
        logger.debug("Converter cache miss for %r", target_type)
        return converter

    def __contains__(self, target_type: Any) -> bool:
        return target_type in self._converters

    def __len__(self) -> int:
        return len(self._converters)

    def clear(self) -> None:
        with self._lock:
            self._converters.clear()


class ValueCoercer:
    """Converts raw filter values to the declared type of a field."""

    def __init__(self, cache: Optional[ConverterCache] = None):
        self.cache = cache if cache is not None else ConverterCache()

    def coerce(self, raw: str, target_type: Any) -> Any:
        """
        Convert raw to target_type.

        Raises:
            CoercionError: The value does not parse as target_type
        """
        if target_type is str or target_type is Any or target_type is object:
            return raw

        if is_union_type(target_type):
            return self._coerce_union(raw, target_type)

        try:
            converter = _FAST_PATHS.get(target_type) or self.cache.get(target_type)
            return converter(raw)
        except CoercionError:
            raise
        except (ValueError, TypeError, ArithmeticError, LookupError) as e:
            raise CoercionError(raw, target_type, str(e)) from e

    def _coerce_union(self, raw: str, target_type: Any) -> Any:
        members = [m for m in typing.get_args(target_type) if m is not type(None)]
        for member in members:
            try:
                return self.coerce(raw, member)
            except CoercionError:
                continue
        names = ", ".join(getattr(m, "__name__", repr(m)) for m in members)
        raise CoercionError(raw, target_type, f"matches none of {names}")


def coerce_value(raw: str, target_type: Any) -> Any:
    """Convert raw to target_type with the default coercer."""
    return get_coercer().coerce(raw, target_type)


_default_coercer: Optional[ValueCoercer] = None
_default_lock = threading.Lock()


def get_coercer() -> ValueCoercer:
    """Get the default value coercer."""
    global _default_coercer
    if _default_coercer is None:
        with _default_lock:
            if _default_coercer is None:
                _default_coercer = ValueCoercer()
    return _default_coercer
