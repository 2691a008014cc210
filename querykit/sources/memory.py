"""
In-memory entity source over a Python sequence.
"""

import copy
import logging
from typing import Any, Iterable, List, Optional, Sequence

from querykit.query.compiler import (
    BoundFilter, BoundSort, InMemoryVisitor, apply_ordering
)
from querykit.query.fields import FieldRegistry, ResolvedPath, get_field_registry
from .base import EntitySource

logger = logging.getLogger(__name__)


class InMemorySource(EntitySource):
    """
    Queries a sequence of entity objects with compiled Python predicates.

    Relations are plain attributes here, so include paths are only
    recorded (see ``includes``).
    """

    def __init__(self, entity_type: type, items: Iterable[Any],
                 registry: Optional[FieldRegistry] = None):
        self.entity_type = entity_type
        self.items = tuple(items)
        self.registry = registry if registry is not None else get_field_registry()
        self.includes: tuple = ()
        self._visitor = InMemoryVisitor()
        self._predicates: tuple = ()
        self._comparators: tuple = ()

    def _derive(self, **changes) -> "InMemorySource":
        clone = copy.copy(self)
        for name, value in changes.items():
            setattr(clone, name, value)
        return clone

    def include(self, paths: Sequence[ResolvedPath]) -> "InMemorySource":
        return self._derive(includes=self.includes + tuple(p.key for p in paths))

    def where(self, filters: Sequence[BoundFilter]) -> "InMemorySource":
        if not filters:
            return self
        return self._derive(_predicates=self._predicates + (self._visitor.predicate(filters),))

    def order_by(self, sorts: Sequence[BoundSort]) -> "InMemorySource":
        if not sorts:
            return self
        return self._derive(_comparators=self._comparators + (self._visitor.ordering(sorts),))

    def _matching(self) -> List[Any]:
        matched = [item for item in self.items
                   if all(predicate(item) for predicate in self._predicates)]
        return apply_ordering(matched, self._visitor.combine_sorts(list(self._comparators)))

    def count(self) -> int:
        return sum(1 for item in self.items
                   if all(predicate(item) for predicate in self._predicates))

    def fetch(self, offset: int, limit: int) -> List[Any]:
        return self._matching()[offset:offset + limit]

    def find(self, entity_id: Any) -> Optional[Any]:
        identifier = self.registry.identifier(self.entity_type)
        if identifier is None:
            raise TypeError(f"{self.entity_type.__name__} has no identifier field")
        for item in self.items:
            if identifier.get(item) == entity_id:
                return item
        return None

    def __len__(self) -> int:
        return len(self.items)
