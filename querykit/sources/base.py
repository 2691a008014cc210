"""
Entity source interface.

A source is an immutable, composable view of one entity collection. The
builder methods return new sources; count, fetch and find run the query.
Asynchronous sources set ``is_async`` and return awaitables from the
three terminal methods.
"""

from abc import ABC, abstractmethod
from typing import Any, List, Optional, Sequence

from querykit.query.compiler import BoundFilter, BoundSort
from querykit.query.fields import ResolvedPath


class EntitySource(ABC):
    """A queryable collection of entities of one type."""

    entity_type: type
    is_async: bool = False

    @abstractmethod
    def include(self, paths: Sequence[ResolvedPath]) -> "EntitySource":
        """Load these relation paths along with each fetched entity."""
        pass

    @abstractmethod
    def where(self, filters: Sequence[BoundFilter]) -> "EntitySource":
        """Keep entities matching every filter."""
        pass

    @abstractmethod
    def order_by(self, sorts: Sequence[BoundSort]) -> "EntitySource":
        """Order by the sorts, after any ordering already applied."""
        pass

    @abstractmethod
    def count(self) -> int:
        """Number of matching entities."""
        pass

    @abstractmethod
    def fetch(self, offset: int, limit: int) -> List[Any]:
        """Matching entities in order, skipping offset and taking at most limit."""
        pass

    @abstractmethod
    def find(self, entity_id: Any) -> Optional[Any]:
        """Entity with this identifier (ignoring filters), or None."""
        pass
