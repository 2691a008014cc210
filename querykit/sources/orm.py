"""
SQLAlchemy entity sources.

Bound clauses become SQLAlchemy column expressions; SQLAlchemy renders the
SQL. Nested paths ("Author.LastName") outer-join each relation hop once,
through an alias per relation prefix, so several clauses over the same
relation share one join. Include paths become selectinload options.

LIKE maps to ``contains`` and ILIKE to ``icontains``, both with
autoescape, so '%' and '_' in values are literal. Whether LIKE is
case-sensitive follows the database (SQLite's LIKE is case-insensitive
for ASCII).
"""

import copy
import logging
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple

from sqlalchemy import and_, func, select
from sqlalchemy.orm import Session, aliased, selectinload

from querykit.query.ast import FilterOperator
from querykit.query.compiler import COMPARISONS, BoundFilter, BoundSort, QueryVisitor
from querykit.query.fields import FieldRegistry, ResolvedPath, get_field_registry
from .base import EntitySource

logger = logging.getLogger(__name__)


class SqlAlchemyVisitor(QueryVisitor):
    """
    Compiles bound clauses to SQLAlchemy expressions.

    Args:
        column_for: Maps a resolved path to the column expression to use
    """

    def __init__(self, column_for: Callable[[ResolvedPath], Any]):
        self.column_for = column_for

    def visit_filter(self, bound: BoundFilter):
        column = self.column_for(bound.path)
        if bound.operator is FilterOperator.LIKE:
            return column.contains(bound.value, autoescape=True)
        if bound.operator is FilterOperator.ILIKE:
            return column.icontains(bound.value, autoescape=True)
        return COMPARISONS[bound.operator](column, bound.value)

    def combine_filters(self, parts: List[Any]):
        if not parts:
            return None
        return and_(*parts)

    def visit_sort(self, bound: BoundSort):
        column = self.column_for(bound.path)
        return column.desc() if bound.descending else column.asc()

    def combine_sorts(self, parts: List[Any]) -> List[Any]:
        return list(parts)


class _Joins:
    """Outer joins added to one statement, keyed by relation prefix."""

    def __init__(self, root: type, stmt, aliases: Dict[Tuple[str, ...], Any]):
        self.root = root
        self.stmt = stmt
        self.aliases = dict(aliases)

    def column(self, path: ResolvedPath):
        parent = self.root
        prefix: Tuple[str, ...] = ()
        for descriptor in path.fields[:-1]:
            prefix += (descriptor.name,)
            alias = self.aliases.get(prefix)
            if alias is None:
                alias = aliased(descriptor.value_type)
                self.stmt = self.stmt.outerjoin(getattr(parent, descriptor.name).of_type(alias))
                self.aliases[prefix] = alias
            parent = alias
        return getattr(parent, path.fields[-1].name)


class OrmSource(EntitySource):
    """
    Entity source over a SQLAlchemy Session.

    Example:
        with db.session() as session:
            page = QueryExecutor().execute(query, OrmSource(session, Book))
    """

    def __init__(self, session: Session, entity_type: type,
                 registry: Optional[FieldRegistry] = None):
        self.session = session
        self.entity_type = entity_type
        self.registry = registry if registry is not None else get_field_registry()
        self._stmt = select(entity_type)
        self._aliases: Dict[Tuple[str, ...], Any] = {}
        self._options: tuple = ()

    @property
    def statement(self):
        """The SELECT statement built so far, without loader options or paging."""
        return self._stmt

    def _derive(self, joins: Optional[_Joins] = None, **changes) -> "OrmSource":
        clone = copy.copy(self)
        if joins is not None:
            clone._stmt = joins.stmt
            clone._aliases = joins.aliases
        for name, value in changes.items():
            setattr(clone, name, value)
        return clone

    def _loader(self, path: ResolvedPath):
        owner = self.entity_type
        option = None
        for descriptor in path.fields:
            attr = getattr(owner, descriptor.name)
            option = selectinload(attr) if option is None else option.selectinload(attr)
            owner = descriptor.value_type
        return option

    def include(self, paths: Sequence[ResolvedPath]) -> "OrmSource":
        if not paths:
            return self
        return self._derive(_options=self._options + tuple(self._loader(p) for p in paths))

    def where(self, filters: Sequence[BoundFilter]) -> "OrmSource":
        if not filters:
            return self
        joins = _Joins(self.entity_type, self._stmt, self._aliases)
        criteria = SqlAlchemyVisitor(joins.column).predicate(filters)
        joins.stmt = joins.stmt.where(criteria)
        return self._derive(joins)

    def order_by(self, sorts: Sequence[BoundSort]) -> "OrmSource":
        if not sorts:
            return self
        joins = _Joins(self.entity_type, self._stmt, self._aliases)
        terms = SqlAlchemyVisitor(joins.column).ordering(sorts)
        joins.stmt = joins.stmt.order_by(*terms)
        return self._derive(joins)

    def _count_statement(self):
        return select(func.count()).select_from(self._stmt.order_by(None).subquery())

    def _page_statement(self, offset: int, limit: int):
        return self._stmt.options(*self._options).offset(offset).limit(limit)

    def _find_statement(self, entity_id: Any):
        identifier = self.registry.identifier(self.entity_type)
        if identifier is None:
            raise TypeError(f"{self.entity_type.__name__} has no primary key")
        column = getattr(self.entity_type, identifier.name)
        return select(self.entity_type).where(column == entity_id).options(*self._options)

    def count(self) -> int:
        return self.session.execute(self._count_statement()).scalar_one()

    def fetch(self, offset: int, limit: int) -> List[Any]:
        return list(self.session.scalars(self._page_statement(offset, limit)).all())

    def find(self, entity_id: Any) -> Optional[Any]:
        return self.session.scalars(self._find_statement(entity_id)).first()


class AsyncOrmSource(OrmSource):
    """
    Entity source over a SQLAlchemy AsyncSession.

    Only included relations are loaded; touching any other relation of a
    fetched entity outside the session's greenlet raises.
    """

    is_async = True

    async def count(self) -> int:
        result = await self.session.execute(self._count_statement())
        return result.scalar_one()

    async def fetch(self, offset: int, limit: int) -> List[Any]:
        result = await self.session.scalars(self._page_statement(offset, limit))
        return list(result.all())

    async def find(self, entity_id: Any) -> Optional[Any]:
        result = await self.session.scalars(self._find_statement(entity_id))
        return result.first()
