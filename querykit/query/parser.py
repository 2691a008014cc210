"""
Parsers for the querykit URL grammar and for saved query definitions.

URL grammar:

    filter = clause ( "," clause )*      clause = property "~" operator "~" value
    sort   = clause ( "," clause )*      clause = property "~" ("asc" | "desc")
    graph  = JSON object                 {"Author": null, "Category": {"Publisher": null}}

Example filter:

    IsAvailable~=~true,PageCount~>~200,Title~ilike~lord%20of

Two strictness profiles exist. The lenient profile (default) drops
malformed clauses and maps unknown sort directions to descending; the
strict profile raises ParseError for both. An unknown filter operator is
an error in both profiles.

Saved queries are named YAML definitions:

    long_books:
      description: "Available books over 500 pages, newest first"
      filter: IsAvailable~=~true,PageCount~>~500
      sort: PublicationDate~desc
      graph:
        Author:
        Category:
          Publisher:
      page_size: 25
"""

import json
import logging
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional, Tuple, Union
from urllib.parse import unquote

import yaml

from querykit.exceptions import ParseError, QueryValidationError
from .ast import (
    FilterClause, FilterOperator, IncludeGraph, PagedListQuery,
    SortClause, SortDirection, normalize_property,
    DEFAULT_PAGE_NUMBER, DEFAULT_PAGE_SIZE,
)

logger = logging.getLogger(__name__)

CLAUSE_SEPARATOR = ','
PART_SEPARATOR = '~'


# =============================================================================
# Grammar Parsers
# =============================================================================

def _malformed(message: str, clause: str, parameter: str, strict: bool) -> None:
    """Raise in the strict profile, log and continue in the lenient one."""
    if strict:
        raise ParseError(f"{message}: {clause!r}", clause=clause, parameter=parameter)
    logger.debug("Dropping malformed %s clause %r (%s)", parameter, clause, message)


def parse_filter(expression: Optional[str], strict: bool = False) -> Tuple[FilterClause, ...]:
    """
    Parse a filter expression into clauses, in source order.

    Each clause splits on the first two '~'; everything after the second
    one is the value, which may itself contain '~'. The value is
    URL-decoded after splitting, so an encoded ',' or '~' is literal.

    Args:
        expression: Raw filter parameter (None or blank means no filters)
        strict: Raise on malformed clauses instead of dropping them

    Returns:
        Tuple of FilterClause

    Raises:
        ParseError: Unknown operator, or malformed clause in strict mode
    """
    if expression is None or not expression.strip():
        return ()

    clauses: List[FilterClause] = []
    for raw in expression.split(CLAUSE_SEPARATOR):
        first = raw.find(PART_SEPARATOR)
        second = raw.find(PART_SEPARATOR, first + 1) if first >= 0 else -1
        if second < 0:
            _malformed("Filter clause needs property~operator~value", raw, "filter", strict)
            continue

        token = raw[first + 1:second]
        try:
            operator = FilterOperator.from_token(token)
        except ValueError:
            raise ParseError(f"Unknown filter method: {token!r}", clause=raw, parameter="filter")

        prop = raw[:first].strip()
        value = unquote(raw[second + 1:])
        if not prop or not value:
            _malformed("Filter clause has an empty property or value", raw, "filter", strict)
            continue

        clauses.append(FilterClause(normalize_property(prop), operator, value))

    return tuple(clauses)


def parse_sort(expression: Optional[str], strict: bool = False) -> Tuple[SortClause, ...]:
    """
    Parse a sort expression into clauses, primary key first.

    Directions are case-insensitive. In the lenient profile an
    unrecognized direction means descending.
    """
    if expression is None or not expression.strip():
        return ()

    clauses: List[SortClause] = []
    for raw in expression.split(CLAUSE_SEPARATOR):
        sep = raw.find(PART_SEPARATOR)
        if sep < 0:
            _malformed("Sort clause needs property~direction", raw, "sort", strict)
            continue

        prop = raw[:sep].strip()
        if not prop:
            _malformed("Sort clause has an empty property", raw, "sort", strict)
            continue

        token = raw[sep + 1:]
        try:
            direction = SortDirection.from_token(token)
        except ValueError:
            if strict:
                raise ParseError(f"Unknown sort direction: {token!r}", clause=raw, parameter="sort")
            direction = SortDirection.DESC

        clauses.append(SortClause(normalize_property(prop), direction))

    return tuple(clauses)


def build_graph(mapping: Mapping[str, Any]) -> IncludeGraph:
    """
    Build an include graph from an already-decoded mapping.

    None marks a leaf, a mapping recurses, any other value is ignored.
    """
    graph: IncludeGraph = {}
    for key, value in mapping.items():
        if value is None:
            graph[str(key)] = None
        elif isinstance(value, Mapping):
            graph[str(key)] = build_graph(value)
    return graph


def parse_graph(expression: Optional[str]) -> Optional[IncludeGraph]:
    """
    Parse a graph expression (JSON object) into an include graph.

    Malformed JSON or a non-object top level yields None, meaning
    "no includes"; it never raises.
    """
    if expression is None or not expression.strip():
        return None

    try:
        data = json.loads(expression)
    except ValueError as e:
        logger.debug("Ignoring malformed graph %r: %s", expression, e)
        return None

    if not isinstance(data, dict):
        logger.debug("Ignoring graph %r: top level is not an object", expression)
        return None

    return build_graph(data)


def parse_graph_strict(expression: Optional[str]) -> IncludeGraph:
    """
    Parse a graph expression that the caller requires.

    Raises:
        QueryValidationError: Empty or invalid graph
    """
    if expression is None or not expression.strip():
        raise QueryValidationError("Parameter 'graph' cannot be null or empty", parameter="graph")

    try:
        data = json.loads(expression)
    except ValueError:
        raise QueryValidationError("Invalid JSON in 'graph' parameter", parameter="graph")

    if not isinstance(data, dict):
        raise QueryValidationError("Invalid JSON in 'graph' parameter", parameter="graph")

    return build_graph(data)


# =============================================================================
# Query Parser
# =============================================================================

class QueryParser:
    """
    Builds PagedListQuery objects from raw request parameters.

    Carries the strictness profile and page limits, so every parameter of
    one request is handled under the same policy.
    """

    def __init__(self, config=None, strict: Optional[bool] = None):
        """
        Initialize parser.

        Args:
            config: Optional QueryKitConfig for page defaults and limits
            strict: Strictness profile (overrides config.strict_parsing)
        """
        self.default_page_size = getattr(config, "default_page_size", DEFAULT_PAGE_SIZE)
        self.max_page_size = getattr(config, "max_page_size", 0)
        if strict is None:
            strict = getattr(config, "strict_parsing", False)
        self.strict = strict

    def parse(
        self,
        page_size: Optional[int] = None,
        page_number: Optional[int] = None,
        filter: Optional[str] = None,
        sort: Optional[str] = None,
        graph: Optional[Union[str, Mapping[str, Any]]] = None,
    ) -> PagedListQuery:
        """
        Parse one request.

        Raises:
            ParseError: Grammar errors
            QueryValidationError: Page size or number out of range
        """
        page_size, page_number = self.page_window(page_size, page_number)

        if isinstance(graph, Mapping):
            include_graph = build_graph(graph)
        else:
            include_graph = parse_graph(graph)

        return PagedListQuery(
            page_size=page_size,
            page_number=page_number,
            filters=parse_filter(filter, strict=self.strict),
            sorts=parse_sort(sort, strict=self.strict),
            graph=include_graph,
        )

    def page_window(self, page_size: Any = None, page_number: Any = None) -> Tuple[int, int]:
        """
        Validate raw page parameters, filling in defaults.

        Returns:
            (page_size, page_number)
        """
        page_size = self._page_value(page_size, self.default_page_size, "pageSize")
        page_number = self._page_value(page_number, DEFAULT_PAGE_NUMBER, "pageNumber")

        if page_size < 1:
            raise QueryValidationError(f"Page size must be positive, got {page_size}",
                                       parameter="pageSize")
        if self.max_page_size and page_size > self.max_page_size:
            raise QueryValidationError(
                f"Page size {page_size} exceeds the maximum of {self.max_page_size}",
                parameter="pageSize")
        if page_number < 1:
            raise QueryValidationError(f"Page number must be at least 1, got {page_number}",
                                       parameter="pageNumber")

        return page_size, page_number

    @staticmethod
    def _page_value(value: Any, default: int, parameter: str) -> int:
        if value is None or value == "":
            return default
        if isinstance(value, bool):
            raise QueryValidationError(f"Invalid {parameter}: {value!r}", parameter=parameter)
        try:
            return int(value)
        except (TypeError, ValueError):
            raise QueryValidationError(f"Invalid {parameter}: {value!r}", parameter=parameter)


def parse_query(
    filter: Optional[str] = None,
    sort: Optional[str] = None,
    graph: Optional[str] = None,
    page_size: Optional[int] = None,
    page_number: Optional[int] = None,
    strict: bool = False,
) -> PagedListQuery:
    """
    Parse a single request.

    Convenience function that creates a parser and parses.
    """
    parser = QueryParser(strict=strict)
    return parser.parse(page_size=page_size, page_number=page_number,
                        filter=filter, sort=sort, graph=graph)


# =============================================================================
# Saved Queries
# =============================================================================

_SAVED_QUERY_KEYS = {"filter", "sort", "graph", "page_size", "page_number", "description"}


def _parse_definitions(data: Any, parser: QueryParser) -> Dict[str, Tuple[PagedListQuery, Optional[str]]]:
    if not isinstance(data, dict):
        raise ParseError(f"Saved queries must be a dictionary, got {type(data).__name__}")

    queries = {}
    for name, definition in data.items():
        if not isinstance(definition, dict):
            raise ParseError(f"Query definition '{name}' must be a dictionary, "
                             f"got {type(definition).__name__}")

        unknown = set(definition) - _SAVED_QUERY_KEYS
        if unknown:
            raise ParseError(f"Query definition '{name}' has unknown keys: "
                             f"{', '.join(sorted(unknown))}")

        graph = definition.get("graph")
        if graph is not None and not isinstance(graph, (str, dict)):
            raise ParseError(f"Query definition '{name}': graph must be a mapping or JSON string")

        queries[str(name)] = (
            parser.parse(
                page_size=definition.get("page_size"),
                page_number=definition.get("page_number"),
                filter=definition.get("filter"),
                sort=definition.get("sort"),
                graph=graph,
            ),
            definition.get("description"),
        )
    return queries


class QueryRegistry:
    """
    Registry for named, saved queries.

    Stores parsed queries and supports loading them from YAML.
    """

    def __init__(self, parser: Optional[QueryParser] = None):
        self.parser = parser or QueryParser()
        self._queries: Dict[str, PagedListQuery] = {}
        self._descriptions: Dict[str, Optional[str]] = {}
        self._sources: Dict[str, Path] = {}  # Track where queries came from

    def register(self, name: str, query: PagedListQuery, description: Optional[str] = None,
                 source: Optional[Path] = None) -> None:
        """Register a query."""
        self._queries[name] = query
        self._descriptions[name] = description
        if source:
            self._sources[name] = source

    def get(self, name: str) -> PagedListQuery:
        """Get a query by name."""
        if name not in self._queries:
            raise KeyError(f"Unknown query: {name}")
        return self._queries[name]

    def describe(self, name: str) -> Optional[str]:
        """Get the description of a query, if any."""
        self.get(name)
        return self._descriptions.get(name)

    def source(self, name: str) -> Optional[Path]:
        """Get the file a query was loaded from, if any."""
        return self._sources.get(name)

    def has(self, name: str) -> bool:
        """Check if a query exists."""
        return name in self._queries

    def list(self) -> List[str]:
        """List all query names."""
        return list(self._queries.keys())

    def load_file(self, path: Union[str, Path]) -> int:
        """
        Load queries from a YAML file.

        Returns number of queries loaded.
        """
        path = Path(path)
        if not path.exists():
            raise ParseError(f"Queries file not found: {path}")

        with open(path) as f:
            data = yaml.safe_load(f)

        queries = _parse_definitions(data, self.parser)
        for name, (query, description) in queries.items():
            self.register(name, query, description, source=path)

        logger.debug("Loaded %d saved queries from %s", len(queries), path)
        return len(queries)

    def load_string(self, yaml_string: str) -> int:
        """
        Load queries from a YAML string.

        Returns number of queries loaded.
        """
        queries = _parse_definitions(yaml.safe_load(yaml_string), self.parser)
        for name, (query, description) in queries.items():
            self.register(name, query, description)
        return len(queries)

    def clear(self) -> None:
        """Remove all registered queries."""
        self._queries.clear()
        self._descriptions.clear()
        self._sources.clear()
