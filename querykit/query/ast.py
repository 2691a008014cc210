"""
Query AST for querykit.

A PagedListQuery is the parsed, immutable form of one paged request:
page window, filter clauses, sort clauses and an optional include graph.

Example query structure:
    PagedListQuery(
        page_size=10,
        page_number=2,
        filters=(
            FilterClause('PageCount', FilterOperator.GREATER, '200'),
            FilterClause('Author.LastName', FilterOperator.ILIKE, 'tolk'),
        ),
        sorts=(SortClause('PublicationDate', SortDirection.DESC),),
        graph={'Author': None, 'Category': {'Publisher': None}},
    )
"""

from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Dict, Optional, Tuple


# Nested include tree: a key mapped to None is a leaf, a key mapped to a
# dict has children.
IncludeGraph = Dict[str, Optional["IncludeGraph"]]

DEFAULT_PAGE_SIZE = 10
DEFAULT_PAGE_NUMBER = 1


def normalize_property(name: str) -> str:
    """Upper-case the first character of a property name ('title' -> 'Title')."""
    if not name:
        return name
    return name[0].upper() + name[1:]


def normalize_path(path: str) -> str:
    """Normalize every segment of a dotted path ('category.publisher' -> 'Category.Publisher')."""
    return '.'.join(normalize_property(segment) for segment in path.split('.'))


# =============================================================================
# Operators and Directions
# =============================================================================

class FilterOperator(Enum):
    """
    Comparison operators of the filter grammar.

    Each member's value is its token in the URL grammar.
    """
    LESS = "<"
    LESS_OR_EQUAL = "<="
    EQUAL = "="
    GREATER_OR_EQUAL = ">="
    GREATER = ">"
    LIKE = "like"
    ILIKE = "ilike"

    @classmethod
    def from_token(cls, token: str) -> "FilterOperator":
        """Look up an operator by its exact grammar token."""
        for member in cls:
            if member.value == token:
                return member
        raise ValueError(f"Unknown filter method: {token}")

    @property
    def is_pattern(self) -> bool:
        """Whether this is a substring match rather than an ordering comparison."""
        return self in (FilterOperator.LIKE, FilterOperator.ILIKE)


class SortDirection(Enum):
    """Sort direction of the sort grammar."""
    ASC = "asc"
    DESC = "desc"

    @classmethod
    def from_token(cls, token: str) -> "SortDirection":
        """Parse a direction token case-insensitively."""
        token = token.strip().lower()
        for member in cls:
            if member.value == token:
                return member
        raise ValueError(f"Unknown sort direction: {token}")


# =============================================================================
# Clauses
# =============================================================================

@dataclass(frozen=True)
class FilterClause:
    """
    One filter clause: ``property~operator~value``.

    The property is normalized (first letter upper-case), the value is the
    URL-decoded raw string. Both are non-empty.
    """
    property: str
    operator: FilterOperator
    value: str

    def __str__(self):
        return f"{self.property}~{self.operator.value}~{self.value}"


@dataclass(frozen=True)
class SortClause:
    """One sort clause: ``property~direction``."""
    property: str
    direction: SortDirection = SortDirection.ASC

    @property
    def descending(self) -> bool:
        return self.direction is SortDirection.DESC

    def __str__(self):
        return f"{self.property}~{self.direction.value}"


# =============================================================================
# Paged Query
# =============================================================================

@dataclass(frozen=True)
class PagedListQuery:
    """
    A complete paged-list request.

    Immutable once built; share it freely between threads.
    """
    page_size: int = DEFAULT_PAGE_SIZE
    page_number: int = DEFAULT_PAGE_NUMBER
    filters: Tuple[FilterClause, ...] = ()
    sorts: Tuple[SortClause, ...] = ()
    graph: Optional[IncludeGraph] = field(default=None, compare=False)

    @classmethod
    def from_params(
        cls,
        page_size: Optional[int] = None,
        page_number: Optional[int] = None,
        filter: Optional[str] = None,
        sort: Optional[str] = None,
        graph: Optional[str] = None,
        strict: bool = False,
    ) -> "PagedListQuery":
        """Build a query from raw request parameters with the lenient defaults."""
        from .parser import QueryParser
        return QueryParser(strict=strict).parse(
            page_size=page_size,
            page_number=page_number,
            filter=filter,
            sort=sort,
            graph=graph,
        )

    def with_page(self, page_number: int, page_size: Optional[int] = None) -> "PagedListQuery":
        """Return a copy pointing at another page."""
        return replace(
            self,
            page_number=page_number,
            page_size=self.page_size if page_size is None else page_size,
        )

    def __repr__(self):
        parts = [f"page={self.page_number}", f"size={self.page_size}"]
        if self.filters:
            parts.append(f"filters=[{', '.join(str(f) for f in self.filters)}]")
        if self.sorts:
            parts.append(f"sorts=[{', '.join(str(s) for s in self.sorts)}]")
        if self.graph:
            parts.append(f"graph={self.graph}")
        return f"PagedListQuery({', '.join(parts)})"


# =============================================================================
# Query Builder (Fluent API)
# =============================================================================

class QueryBuilder:
    """
    Fluent builder for constructing queries programmatically.

    Example:
        query = (QueryBuilder()
            .filter('PageCount', '>', 200)
            .filter('Language', 'like', 'English')
            .sort('PublicationDate', 'desc')
            .include('Author')
            .include('Category.Publisher')
            .page(2, size=25)
            .build())
    """

    def __init__(self):
        self._filters = []
        self._sorts = []
        self._graph: IncludeGraph = {}
        self._page_number = DEFAULT_PAGE_NUMBER
        self._page_size = DEFAULT_PAGE_SIZE

    def filter(self, prop: str, operator, value) -> "QueryBuilder":
        """Add a filter clause. Operator may be a token or a FilterOperator."""
        if not isinstance(operator, FilterOperator):
            operator = FilterOperator.from_token(operator)
        self._filters.append(FilterClause(normalize_property(prop), operator, str(value)))
        return self

    def sort(self, prop: str, direction="asc") -> "QueryBuilder":
        """Add a sort clause."""
        if not isinstance(direction, SortDirection):
            direction = SortDirection.from_token(direction)
        self._sorts.append(SortClause(normalize_property(prop), direction))
        return self

    def include(self, path: str) -> "QueryBuilder":
        """Add a dotted include path to the graph (segments normalized)."""
        node = self._graph
        segments = normalize_path(path).split('.')
        for segment in segments[:-1]:
            child = node.get(segment)
            if child is None:
                child = {}
                node[segment] = child
            node = child
        node.setdefault(segments[-1], None)
        return self

    def page(self, number: int, size: Optional[int] = None) -> "QueryBuilder":
        """Set the page window."""
        self._page_number = number
        if size is not None:
            self._page_size = size
        return self

    def build(self) -> PagedListQuery:
        """Build and return the query."""
        return PagedListQuery(
            page_size=self._page_size,
            page_number=self._page_number,
            filters=tuple(self._filters),
            sorts=tuple(self._sorts),
            graph=self._graph or None,
        )


def query() -> QueryBuilder:
    """Create a new query builder."""
    return QueryBuilder()
