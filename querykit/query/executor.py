"""
Query orchestration for querykit.

Runs a PagedListQuery against an entity source:

    1. bind clauses to the source's entity type
    2. apply includes, then filters, then sorts
    3. count the matches
    4. compute the page window
    5. fetch the page slice
    6. assemble a PagedList

Errors raised by the source (storage failures, cancellation) propagate
unchanged. The same pipeline runs synchronously (execute) or on an
asynchronous source (execute_async).
"""

import inspect
import logging
from typing import Any, Mapping, Optional, Tuple, Union, TYPE_CHECKING

from querykit.exceptions import ObjectNotFoundError
from .ast import PagedListQuery
from .compiler import CompiledQuery, QueryCompiler
from .pagination import PagedList, PageWindow
from .parser import QueryParser, build_graph, parse_graph_strict

if TYPE_CHECKING:
    from querykit.sources.base import EntitySource

logger = logging.getLogger(__name__)


async def _resolve(value: Any) -> Any:
    if inspect.isawaitable(value):
        return await value
    return value


class QueryExecutor:
    """
    Executes paged queries and single-entity graph lookups.

    Holds no per-request state; one executor can serve concurrent requests.
    """

    def __init__(self, compiler: Optional[QueryCompiler] = None):
        self.compiler = compiler or QueryCompiler()

    def prepare(self, query: PagedListQuery,
                source: "EntitySource") -> Tuple[CompiledQuery, "EntitySource"]:
        """Bind the query and apply includes, filters and sorts to the source."""
        compiled = self.compiler.compile(query, source.entity_type)
        prepared = (source
                    .include(compiled.includes)
                    .where(compiled.filters)
                    .order_by(compiled.sorts))
        return compiled, prepared

    def _assemble(self, compiled: CompiledQuery, window: PageWindow, elements) -> PagedList:
        elements = list(elements)
        logger.debug("Page %d/%d of %s: %d of %d elements",
                     window.page_number, window.total_pages,
                     compiled.entity_type.__name__, len(elements), window.total_elements)
        return PagedList(page_meta=window.meta(len(elements)), elements=elements)

    def execute(self, query: PagedListQuery, source: "EntitySource") -> PagedList:
        """
        Run a paged query on a synchronous source.

        Raises:
            QueryValidationError: Invalid page window, operator or value
            TypeError: The source is asynchronous
        """
        if source.is_async:
            raise TypeError(f"{type(source).__name__} is asynchronous; use execute_async()")

        compiled, prepared = self.prepare(query, source)
        window = PageWindow(compiled.page_number, compiled.page_size, prepared.count())
        return self._assemble(compiled, window, prepared.fetch(window.skip, window.page_size))

    async def execute_async(self, query: PagedListQuery, source: "EntitySource") -> PagedList:
        """Run a paged query, awaiting the source where it is asynchronous."""
        compiled, prepared = self.prepare(query, source)
        total = await _resolve(prepared.count())
        window = PageWindow(compiled.page_number, compiled.page_size, total)
        elements = await _resolve(prepared.fetch(window.skip, window.page_size))
        return self._assemble(compiled, window, elements)

    def _lookup(self, source: "EntitySource", entity_id: Any,
                graph: Union[str, Mapping[str, Any], None]):
        if isinstance(graph, Mapping):
            include_graph = build_graph(graph)
        else:
            include_graph = parse_graph_strict(graph)

        entity_type = source.entity_type
        includes, _ = self.compiler.bind_includes(entity_type, include_graph)

        if isinstance(entity_id, str):
            identifier = self.compiler.registry.identifier(entity_type)
            if identifier is not None:
                entity_id = self.compiler.coercer.coerce(entity_id, identifier.value_type)

        return source.include(includes), entity_id

    def _not_found(self, source: "EntitySource", entity_id: Any) -> ObjectNotFoundError:
        return ObjectNotFoundError(f"{source.entity_type.__name__} with ID '{entity_id}' not found")

    def get_graph(self, source: "EntitySource", entity_id: Any,
                  graph: Union[str, Mapping[str, Any], None]) -> Any:
        """
        Load one entity with the relations named by graph.

        The graph is required here: an empty or invalid one is an error.
        A string identifier is converted to the identifier field's type.

        Raises:
            QueryValidationError: Missing or invalid graph, unconvertible id
            ObjectNotFoundError: No entity with this identifier
        """
        if source.is_async:
            raise TypeError(f"{type(source).__name__} is asynchronous; use get_graph_async()")

        prepared, entity_id = self._lookup(source, entity_id, graph)
        entity = prepared.find(entity_id)
        if entity is None:
            raise self._not_found(source, entity_id)
        return entity

    async def get_graph_async(self, source: "EntitySource", entity_id: Any,
                              graph: Union[str, Mapping[str, Any], None]) -> Any:
        """Asynchronous get_graph."""
        prepared, entity_id = self._lookup(source, entity_id, graph)
        entity = await _resolve(prepared.find(entity_id))
        if entity is None:
            raise self._not_found(source, entity_id)
        return entity


def execute_query(source: "EntitySource", query: Optional[PagedListQuery] = None,
                  executor: Optional[QueryExecutor] = None, **params) -> PagedList:
    """
    Run a query against a source.

    Convenience function: with no query, one is parsed from the raw
    parameters (filter, sort, graph, page_size, page_number).

    Example:
        page = execute_query(InMemorySource(Book, books),
                             filter="PageCount~>~300", sort="Title~asc")
    """
    if query is None:
        query = QueryParser().parse(**params)
    executor = executor or QueryExecutor()
    return executor.execute(query, source)
