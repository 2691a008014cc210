"""
querykit query engine - filter, sort and graph expressions over any entity source.

This module provides:
- Parsers for the URL grammar (filter, sort, graph) and YAML saved queries
- Field resolution of dotted, case-normalized property paths
- Value coercion to field types
- Compilation to backend-neutral bound plans
- Pagination and the orchestrating executor

Example usage:

    from querykit.query import parse_query, QueryExecutor
    from querykit.sources import InMemorySource

    q = parse_query(
        filter="IsAvailable~=~true,PageCount~>~200,Language~like~English",
        sort="PublicationDate~desc,Title~asc",
        graph='{"Author": null, "Category": {"Publisher": null}}',
        page_size=25,
    )

    page = QueryExecutor().execute(q, InMemorySource(Book, books))

    print(page.page_meta.total_elements)
    for book in page:
        print(book.title)

    # Fluent query builder
    from querykit.query import query

    q = (query()
        .filter('Author.LastName', 'ilike', 'tolkien')
        .sort('PublicationDate', 'desc')
        .include('Author')
        .page(2, size=25)
        .build())
"""

from .ast import (
    FilterOperator,
    SortDirection,
    FilterClause,
    SortClause,
    PagedListQuery,
    IncludeGraph,
    QueryBuilder,
    query,
    normalize_property,
    normalize_path,
)

from .parser import (
    parse_filter,
    parse_sort,
    parse_graph,
    parse_graph_strict,
    build_graph,
    parse_query,
    QueryParser,
    QueryRegistry,
)

from .fields import (
    FieldDescriptor,
    EntityModel,
    ResolvedPath,
    FieldRegistry,
    get_field_registry,
)

from .coerce import (
    ConverterCache,
    ValueCoercer,
    coerce_value,
    get_coercer,
)

from .compiler import (
    BoundFilter,
    BoundSort,
    CompiledQuery,
    QueryCompiler,
    QueryVisitor,
    InMemoryVisitor,
    compile_predicate,
    compile_comparator,
    apply_ordering,
)

from .includes import flatten_includes

from .pagination import (
    PageMeta,
    PageWindow,
    PagedList,
    paginate,
    total_pages,
)

from .executor import (
    QueryExecutor,
    execute_query,
)

__all__ = [
    # AST
    'FilterOperator',
    'SortDirection',
    'FilterClause',
    'SortClause',
    'PagedListQuery',
    'IncludeGraph',
    'QueryBuilder',
    'query',
    'normalize_property',
    'normalize_path',

    # Parser
    'parse_filter',
    'parse_sort',
    'parse_graph',
    'parse_graph_strict',
    'build_graph',
    'parse_query',
    'QueryParser',
    'QueryRegistry',

    # Fields
    'FieldDescriptor',
    'EntityModel',
    'ResolvedPath',
    'FieldRegistry',
    'get_field_registry',

    # Coercion
    'ConverterCache',
    'ValueCoercer',
    'coerce_value',
    'get_coercer',

    # Compiler
    'BoundFilter',
    'BoundSort',
    'CompiledQuery',
    'QueryCompiler',
    'QueryVisitor',
    'InMemoryVisitor',
    'compile_predicate',
    'compile_comparator',
    'apply_ordering',

    # Includes
    'flatten_includes',

    # Pagination
    'PageMeta',
    'PageWindow',
    'PagedList',
    'paginate',
    'total_pages',

    # Executor
    'QueryExecutor',
    'execute_query',
]
