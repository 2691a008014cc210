"""
Compilation of parsed queries into bound, backend-neutral plans.

Binding resolves every clause's property path against the entity type and
coerces filter values to the field type. Clauses whose path does not
resolve are skipped. The result is a CompiledQuery of BoundFilter and
BoundSort nodes that a backend turns into its own expressions by
implementing QueryVisitor:

    visitor.predicate(compiled.filters)   -> AND of all filters
    visitor.ordering(compiled.sorts)      -> primary, then secondary, ...

InMemoryVisitor is the reference backend over plain Python objects.
"""

import logging
import operator
import typing
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from functools import cmp_to_key
from typing import (
    Any, Callable, Generic, Iterable, List, Optional, Sequence, Tuple, TypeVar
)

from querykit.exceptions import QueryValidationError
from .ast import (
    FilterClause, FilterOperator, PagedListQuery, SortClause, IncludeGraph
)
from .coerce import ValueCoercer, get_coercer, is_union_type
from .fields import FieldRegistry, ResolvedPath, get_field_registry
from .includes import flatten_includes

logger = logging.getLogger(__name__)

T = TypeVar('T')
Predicate = Callable[[Any], bool]
Comparator = Callable[[Any, Any], int]


# =============================================================================
# Bound Plan
# =============================================================================

@dataclass(frozen=True)
class BoundFilter:
    """
    A filter clause with its path resolved and its value coerced.

    For fields declared as Any the value stays a string and `deferred` is
    set; backends that see the actual values convert it against each one.
    """
    clause: FilterClause
    path: ResolvedPath
    value: Any
    deferred: bool = False

    @property
    def operator(self) -> FilterOperator:
        return self.clause.operator


@dataclass(frozen=True)
class BoundSort:
    """A sort clause with its path resolved; position 0 is the primary key."""
    clause: SortClause
    path: ResolvedPath
    position: int

    @property
    def descending(self) -> bool:
        return self.clause.descending


@dataclass(frozen=True)
class CompiledQuery:
    """Everything a source needs to run one paged query."""
    entity_type: type
    filters: Tuple[BoundFilter, ...] = ()
    sorts: Tuple[BoundSort, ...] = ()
    includes: Tuple[ResolvedPath, ...] = ()
    page_size: int = 10
    page_number: int = 1
    skipped: Tuple[str, ...] = ()

    @property
    def include_paths(self) -> List[str]:
        """Canonical dotted include paths."""
        return [path.key for path in self.includes]

    def __repr__(self):
        return (f"CompiledQuery({self.entity_type.__name__}, filters={len(self.filters)}, "
                f"sorts={len(self.sorts)}, includes={self.include_paths}, "
                f"skipped={list(self.skipped)})")


def _is_untyped(value_type: Any) -> bool:
    return value_type is Any or value_type is object


def _is_text_type(value_type: Any) -> bool:
    if is_union_type(value_type):
        return any(_is_text_type(member) for member in typing.get_args(value_type))
    return _is_untyped(value_type) or (
        isinstance(value_type, type) and issubclass(value_type, str))


def _is_orderable_type(value_type: Any) -> bool:
    if isinstance(value_type, type) and issubclass(value_type, Enum):
        return issubclass(value_type, (int, float, str))
    return True


class QueryCompiler:
    """
    Binds parsed clauses to an entity type.

    The field registry and converter cache are shared, thread-safe state;
    inject them to control their lifetime, or let the compiler use the
    process defaults.
    """

    def __init__(self, registry: Optional[FieldRegistry] = None,
                 coercer: Optional[ValueCoercer] = None):
        self.registry = registry if registry is not None else get_field_registry()
        self.coercer = coercer if coercer is not None else get_coercer()

    def bind_filter(self, entity_type: type, clause: FilterClause) -> Optional[BoundFilter]:
        """
        Bind one filter clause.

        Returns:
            BoundFilter, or None if the property does not resolve

        Raises:
            QueryValidationError: Operator not applicable to the field type
            CoercionError: Value not convertible to the field type
        """
        path = self.registry.resolve(entity_type, clause.property)
        if path is None:
            return None

        if clause.operator.is_pattern:
            if not _is_text_type(path.value_type):
                raise QueryValidationError(
                    f"Operator '{clause.operator.value}' needs a text field, "
                    f"'{clause.property}' is {getattr(path.value_type, '__name__', path.value_type)}",
                    parameter="filter")
            return BoundFilter(clause, path, clause.value)

        if clause.operator is not FilterOperator.EQUAL and not _is_orderable_type(path.value_type):
            raise QueryValidationError(
                f"Operator '{clause.operator.value}' cannot order values of '{clause.property}'",
                parameter="filter")

        if _is_untyped(path.value_type):
            return BoundFilter(clause, path, clause.value, deferred=True)

        return BoundFilter(clause, path, self.coercer.coerce(clause.value, path.value_type))

    def bind_filters(self, entity_type: type,
                     clauses: Iterable[FilterClause]) -> Tuple[Tuple[BoundFilter, ...], Tuple[str, ...]]:
        """Bind filters in source order. Returns (bound, skipped clause texts)."""
        bound, skipped = [], []
        for clause in clauses:
            result = self.bind_filter(entity_type, clause)
            if result is None:
                logger.debug("Skipping filter %s: no such property on %s", clause, entity_type.__name__)
                skipped.append(str(clause))
            else:
                bound.append(result)
        return tuple(bound), tuple(skipped)

    def bind_sorts(self, entity_type: type,
                   clauses: Iterable[SortClause]) -> Tuple[Tuple[BoundSort, ...], Tuple[str, ...]]:
        """Bind sorts; positions count only clauses that resolved."""
        bound, skipped = [], []
        for clause in clauses:
            path = self.registry.resolve(entity_type, clause.property)
            if path is None:
                logger.debug("Skipping sort %s: no such property on %s", clause, entity_type.__name__)
                skipped.append(str(clause))
                continue
            bound.append(BoundSort(clause, path, len(bound)))
        return tuple(bound), tuple(skipped)

    def bind_includes(self, entity_type: type,
                      graph: Optional[IncludeGraph]) -> Tuple[Tuple[ResolvedPath, ...], Tuple[str, ...]]:
        """Flatten the include graph, keeping the paths that name relations."""
        kept, skipped = [], []
        for path in flatten_includes(graph):
            resolved = self.registry.resolve(entity_type, path, include=True)
            if resolved is None or not all(f.relation for f in resolved.fields):
                logger.debug("Skipping include %r: no such relation on %s", path, entity_type.__name__)
                skipped.append(path)
            else:
                kept.append(resolved)
        return tuple(kept), tuple(skipped)

    def compile(self, query: PagedListQuery, entity_type: type) -> CompiledQuery:
        """Bind a whole query."""
        filters, skipped_filters = self.bind_filters(entity_type, query.filters)
        sorts, skipped_sorts = self.bind_sorts(entity_type, query.sorts)
        includes, skipped_includes = self.bind_includes(entity_type, query.graph)

        compiled = CompiledQuery(
            entity_type=entity_type,
            filters=filters,
            sorts=sorts,
            includes=includes,
            page_size=query.page_size,
            page_number=query.page_number,
            skipped=skipped_filters + skipped_sorts + skipped_includes,
        )
        logger.debug("Compiled %r", compiled)
        return compiled


# =============================================================================
# Visitors
# =============================================================================

class QueryVisitor(ABC, Generic[T]):
    """
    Turns bound clauses into backend expressions.

    Subclasses produce one expression per clause; the combine hooks join
    them (filters with AND, sorts in priority order).
    """

    @abstractmethod
    def visit_filter(self, bound: BoundFilter) -> T:
        """Expression for one filter."""
        pass

    @abstractmethod
    def combine_filters(self, parts: List[T]) -> Any:
        """AND of the filter expressions, in source order."""
        pass

    @abstractmethod
    def visit_sort(self, bound: BoundSort) -> Any:
        """Ordering term for one sort key."""
        pass

    @abstractmethod
    def combine_sorts(self, parts: List[Any]) -> Any:
        """Ordering by the first term, then the second, ..."""
        pass

    def predicate(self, filters: Sequence[BoundFilter]) -> Any:
        return self.combine_filters([self.visit_filter(f) for f in filters])

    def ordering(self, sorts: Sequence[BoundSort]) -> Any:
        return self.combine_sorts([self.visit_sort(s) for s in sorts])


def _align(left: Any, right: Any) -> Tuple[Any, Any]:
    """Make naive and aware datetimes comparable by reading naive ones as UTC."""
    if isinstance(left, datetime) and isinstance(right, datetime):
        if left.tzinfo is None and right.tzinfo is not None:
            left = left.replace(tzinfo=timezone.utc)
        elif right.tzinfo is None and left.tzinfo is not None:
            right = right.replace(tzinfo=timezone.utc)
    return left, right


# Comparison operators shared by the in-memory and SQL backends
COMPARISONS = {
    FilterOperator.LESS: operator.lt,
    FilterOperator.LESS_OR_EQUAL: operator.le,
    FilterOperator.EQUAL: operator.eq,
    FilterOperator.GREATER_OR_EQUAL: operator.ge,
    FilterOperator.GREATER: operator.gt,
}


def _check(bound: BoundFilter, test, actual: Any, expected: Any) -> bool:
    try:
        return bool(test(*_align(actual, expected)))
    except TypeError:
        raise QueryValidationError(
            f"Cannot compare '{bound.clause.property}' values of type "
            f"{type(actual).__name__} with {bound.clause.value!r}", parameter="filter")


class InMemoryVisitor(QueryVisitor[Predicate]):
    """
    Compiles bound clauses to Python callables.

    Filters become predicates. A missing (None) value never matches.
    Sorts become cmp-style comparators; None orders before any value,
    so it comes first ascending and last descending.
    """

    def __init__(self, coercer: Optional[ValueCoercer] = None):
        self.coercer = coercer if coercer is not None else get_coercer()

    def visit_filter(self, bound: BoundFilter) -> Predicate:
        get = bound.path.get
        expected = bound.value

        if bound.operator is FilterOperator.LIKE:
            def like(entity):
                actual = get(entity)
                return actual is not None and expected in str(actual)
            return like

        if bound.operator is FilterOperator.ILIKE:
            needle = expected.casefold()

            def ilike(entity):
                actual = get(entity)
                return actual is not None and needle in str(actual).casefold()
            return ilike

        test = COMPARISONS[bound.operator]

        if bound.deferred:
            return self._deferred_compare(bound, test)

        def compare(entity):
            actual = get(entity)
            if actual is None:
                return False
            return _check(bound, test, actual, expected)
        return compare

    def _deferred_compare(self, bound: BoundFilter, test) -> Predicate:
        get = bound.path.get
        raw = bound.value
        coerce = self.coercer.coerce

        def compare(entity):
            actual = get(entity)
            if actual is None:
                return False
            expected = raw if isinstance(actual, str) else coerce(raw, type(actual))
            return _check(bound, test, actual, expected)
        return compare

    def combine_filters(self, parts: List[Predicate]) -> Predicate:
        if not parts:
            return lambda entity: True
        if len(parts) == 1:
            return parts[0]
        return lambda entity: all(part(entity) for part in parts)

    def visit_sort(self, bound: BoundSort) -> Comparator:
        get = bound.path.get
        sign = -1 if bound.descending else 1

        def compare(left, right):
            a, b = get(left), get(right)
            if a is None or b is None:
                result = (a is not None) - (b is not None)
            else:
                a, b = _align(a, b)
                result = (a > b) - (a < b)
            return sign * result
        return compare

    def combine_sorts(self, parts: List[Comparator]) -> Optional[Comparator]:
        if not parts:
            return None

        def compare(left, right):
            for part in parts:
                result = part(left, right)
                if result:
                    return result
            return 0
        return compare


def compile_predicate(entity_type: type, filters: Iterable[FilterClause],
                      compiler: Optional[QueryCompiler] = None) -> Predicate:
    """Compile filter clauses into one predicate over entities."""
    compiler = compiler or QueryCompiler()
    bound, _ = compiler.bind_filters(entity_type, filters)
    return InMemoryVisitor().predicate(bound)


def compile_comparator(entity_type: type, sorts: Iterable[SortClause],
                       compiler: Optional[QueryCompiler] = None) -> Optional[Comparator]:
    """Compile sort clauses into one comparator, or None if nothing resolves."""
    compiler = compiler or QueryCompiler()
    bound, _ = compiler.bind_sorts(entity_type, sorts)
    return InMemoryVisitor().ordering(bound)


def apply_ordering(items: Iterable[T], comparator: Optional[Comparator]) -> List[T]:
    """Stable sort by comparator; no comparator keeps source order."""
    if comparator is None:
        return list(items)
    return sorted(items, key=cmp_to_key(comparator))
