"""
querykit - filter, sort and include-graph queries with pagination, for any backend.

Turns compact, URL-safe filter / sort / graph expressions into type-checked
query plans, runs them against in-memory collections or SQLAlchemy
sessions, and returns paged results.

Design Principles:
- One grammar, many backends: the core never writes SQL
- Unknown property names are ignored, malformed values are rejected
- Parsed queries are immutable and safe to share between threads

Example Usage:
    >>> from querykit import parse_query, QueryExecutor, OrmSource
    >>> q = parse_query(filter="PageCount~>~200", sort="Title~asc", page_size=20)
    >>> with Database("sqlite:///library.db").session() as session:
    ...     page = QueryExecutor().execute(q, OrmSource(session, Book))
    >>> page.to_dict()["pageMeta"]
"""

__version__ = "0.3.0"
__author__ = "querykit Contributors"

# Errors
from querykit.exceptions import (
    QueryKitError,
    QueryValidationError,
    ParseError,
    CoercionError,
    ObjectNotFoundError,
)

# Configuration
from querykit.config import QueryKitConfig, get_config, init_config

# Query engine
from querykit.query import (
    PagedListQuery,
    FilterClause,
    FilterOperator,
    SortClause,
    SortDirection,
    QueryParser,
    QueryRegistry,
    QueryExecutor,
    QueryCompiler,
    FieldRegistry,
    ValueCoercer,
    ConverterCache,
    PagedList,
    PageMeta,
    flatten_includes,
    parse_query,
    execute_query,
    query,
)

# Sources
from querykit.sources import EntitySource, InMemorySource, OrmSource, AsyncOrmSource

# Database
from querykit.db import Database

__all__ = [
    'QueryKitError',
    'QueryValidationError',
    'ParseError',
    'CoercionError',
    'ObjectNotFoundError',
    'QueryKitConfig',
    'get_config',
    'init_config',
    'PagedListQuery',
    'FilterClause',
    'FilterOperator',
    'SortClause',
    'SortDirection',
    'QueryParser',
    'QueryRegistry',
    'QueryExecutor',
    'QueryCompiler',
    'FieldRegistry',
    'ValueCoercer',
    'ConverterCache',
    'PagedList',
    'PageMeta',
    'flatten_includes',
    'parse_query',
    'execute_query',
    'query',
    'EntitySource',
    'InMemorySource',
    'OrmSource',
    'AsyncOrmSource',
    'Database',
]
