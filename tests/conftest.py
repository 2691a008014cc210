import pytest

from library import Book, make_library
import library_orm

from querykit.db import Database
from querykit.query import (
    ConverterCache, FieldRegistry, QueryCompiler, QueryExecutor, ValueCoercer
)
from querykit.sources import InMemorySource


@pytest.fixture
def books():
    """Twenty-five deterministic library books."""
    return make_library(25)


@pytest.fixture
def registry():
    """A fresh field registry per test."""
    return FieldRegistry()


@pytest.fixture
def coercer():
    """A value coercer with its own converter cache."""
    return ValueCoercer(ConverterCache())


@pytest.fixture
def compiler(registry, coercer):
    return QueryCompiler(registry, coercer)


@pytest.fixture
def executor(compiler):
    return QueryExecutor(compiler)


@pytest.fixture
def memory_source(books, registry):
    """In-memory source over the library books."""
    return InMemorySource(Book, books, registry=registry)


@pytest.fixture
def db():
    """In-memory SQLite database with the library schema."""
    database = Database("sqlite://", metadata=library_orm.Base.metadata, echo=False)
    yield database
    database.close()


@pytest.fixture
def session(db, books):
    """Session over a database seeded with the library books."""
    with db.session() as session:
        library_orm.seed(session, books)
        yield session
