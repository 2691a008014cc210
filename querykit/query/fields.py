"""
Field resolution for querykit.

Maps dotted, case-normalized property paths ("Author.FirstName") onto the
attributes of entity types. Each entity type is inspected once and its
descriptor table cached in a FieldRegistry.

Two kinds of entity types are understood:

- SQLAlchemy mapped classes: column attributes and relationships come
  from the mapper.
- Annotated classes (dataclasses, plain classes with annotations): fields
  come from the type hints. Optional[X] is X; Union[X, Y] keeps its
  members, tried in order when converting; List[X], Set[X], ... are
  collections of X.

Every attribute is reachable by its name with the first letter
upper-cased ('title' -> 'Title') and by its PascalCase spelling
('first_name' -> 'FirstName').
"""

import collections.abc
import logging
import threading
import typing
import uuid
from dataclasses import dataclass
from datetime import date, datetime, time, timedelta
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, Optional, Tuple

from sqlalchemy import inspect as sa_inspect
from sqlalchemy.orm import Mapper

from .ast import normalize_property
from .coerce import is_union_type

logger = logging.getLogger(__name__)

SCALAR_TYPES = (str, int, float, bool, Decimal, datetime, date, time, timedelta,
                uuid.UUID, bytes)

_COLLECTION_ORIGINS = (list, tuple, set, frozenset,
                       collections.abc.Sequence, collections.abc.MutableSequence,
                       collections.abc.Set, collections.abc.MutableSet,
                       collections.abc.Collection, collections.abc.Iterable)


def pascal_case(name: str) -> str:
    """'first_name' -> 'FirstName'."""
    return ''.join(normalize_property(part) for part in name.split('_') if part)


def is_scalar_type(value_type: Any) -> bool:
    """Whether values of this type are compared directly rather than navigated."""
    if value_type is Any or value_type is object:
        return True
    if not isinstance(value_type, type):
        return True
    return issubclass(value_type, SCALAR_TYPES) or issubclass(value_type, Enum)


# =============================================================================
# Descriptors
# =============================================================================

@dataclass(frozen=True)
class FieldDescriptor:
    """
    One attribute of an entity type.

    Attributes:
        name: Python attribute name
        value_type: Declared type, Optional unwrapped; for collections the element type
        many: Collection of value_type
        relation: Navigates to another entity type
    """
    name: str
    value_type: Any
    many: bool = False
    relation: bool = False

    def get(self, entity: Any) -> Any:
        return getattr(entity, self.name, None)


@dataclass(frozen=True)
class EntityModel:
    """Descriptor table of one entity type."""
    entity_type: type
    fields: Dict[str, FieldDescriptor]
    identifier: Optional[FieldDescriptor] = None

    def lookup(self, name: str) -> Optional[FieldDescriptor]:
        """Find a descriptor by request name (case-normalized)."""
        return self.fields.get(normalize_property(name))

    @property
    def names(self) -> Tuple[str, ...]:
        """Distinct attribute names, in discovery order."""
        seen = []
        for descriptor in self.fields.values():
            if descriptor.name not in seen:
                seen.append(descriptor.name)
        return tuple(seen)


@dataclass(frozen=True)
class ResolvedPath:
    """
    A property path resolved against a root entity type.

    `fields` holds one descriptor per segment.
    """
    root: type
    fields: Tuple[FieldDescriptor, ...]

    @property
    def value_type(self) -> Any:
        """Declared type of the terminal field."""
        return self.fields[-1].value_type

    @property
    def attribute_path(self) -> str:
        """Dotted Python attribute path ('author.first_name')."""
        return '.'.join(f.name for f in self.fields)

    @property
    def key(self) -> str:
        """Canonical dotted request path ('Author.FirstName')."""
        return '.'.join(pascal_case(f.name) for f in self.fields)

    def get(self, entity: Any) -> Any:
        """Read the terminal value, returning None if any hop is None."""
        value = entity
        for descriptor in self.fields:
            if value is None:
                return None
            value = descriptor.get(value)
        return value

    def __len__(self) -> int:
        return len(self.fields)


# =============================================================================
# Discovery
# =============================================================================

def _unwrap_optional(hint: Any) -> Any:
    if is_union_type(hint):
        args = [arg for arg in typing.get_args(hint) if arg is not type(None)]
        if len(args) == 1:
            return args[0]
        return typing.Union[tuple(args)]
    return hint


def _describe_hint(name: str, hint: Any) -> Optional[FieldDescriptor]:
    if typing.get_origin(hint) is typing.ClassVar:
        return None

    hint = _unwrap_optional(hint)
    origin = typing.get_origin(hint)

    if origin in _COLLECTION_ORIGINS:
        args = typing.get_args(hint)
        element = _unwrap_optional(args[0]) if args else Any
        return FieldDescriptor(name, element, many=True, relation=not is_scalar_type(element))

    if is_union_type(hint):
        return FieldDescriptor(name, hint)

    if origin is not None:
        # Dict[...], Callable[...] and the like are opaque values
        return FieldDescriptor(name, Any)

    if isinstance(hint, str):
        # Unresolved forward reference
        return FieldDescriptor(name, Any)

    return FieldDescriptor(name, hint, relation=not is_scalar_type(hint))


def _discover_mapped(entity_type: type, mapper: Mapper) -> Dict[str, FieldDescriptor]:
    descriptors = {}
    for attr in mapper.column_attrs:
        try:
            python_type = attr.columns[0].type.python_type
        except NotImplementedError:
            python_type = Any
        descriptors[attr.key] = FieldDescriptor(attr.key, python_type)

    for rel in mapper.relationships:
        descriptors[rel.key] = FieldDescriptor(
            rel.key, rel.mapper.class_, many=bool(rel.uselist), relation=True
        )
    return descriptors


def _discover_annotated(entity_type: type) -> Dict[str, FieldDescriptor]:
    try:
        hints = typing.get_type_hints(entity_type)
    except (NameError, TypeError) as e:
        logger.debug("Falling back to raw annotations for %s: %s", entity_type.__name__, e)
        hints = {}
        for klass in reversed(entity_type.__mro__):
            hints.update(getattr(klass, '__annotations__', {}))

    descriptors = {}
    for name, hint in hints.items():
        if name.startswith('_'):
            continue
        descriptor = _describe_hint(name, hint)
        if descriptor is not None:
            descriptors[name] = descriptor
    return descriptors


def discover(entity_type: type) -> EntityModel:
    """Inspect an entity type and build its descriptor table."""
    identifier_name = None

    if is_scalar_type(entity_type):
        by_attribute = {}
    else:
        mapper = sa_inspect(entity_type, raiseerr=False)
        if isinstance(mapper, Mapper):
            by_attribute = _discover_mapped(entity_type, mapper)
            if mapper.primary_key:
                identifier_name = mapper.get_property_by_column(mapper.primary_key[0]).key
        else:
            by_attribute = _discover_annotated(entity_type)

    fields: Dict[str, FieldDescriptor] = {}
    for name, descriptor in by_attribute.items():
        fields.setdefault(normalize_property(name), descriptor)
        fields.setdefault(pascal_case(name), descriptor)

    identifier = by_attribute.get(identifier_name) if identifier_name else fields.get('Id')
    return EntityModel(entity_type, fields, identifier)


# =============================================================================
# Registry
# =============================================================================

class FieldRegistry:
    """
    Process-wide cache of entity models.

    Lookups read the table without locking; a model missing from the table
    is built outside the lock and inserted only if no other thread got
    there first, so every caller sees the same EntityModel per type.
    """

    def __init__(self):
        self._models: Dict[type, EntityModel] = {}
        self._lock = threading.Lock()

    def model(self, entity_type: type) -> EntityModel:
        """Get (building on first use) the model of an entity type."""
        model = self._models.get(entity_type)
        if model is not None:
            return model

        built = discover(entity_type)
        with self._lock:
            model = self._models.setdefault(entity_type, built)
        if model is built:
            logger.debug("Discovered %d fields on %s", len(built.names), entity_type.__name__)
        return model

    def resolve(self, root: type, path: str, include: bool = False) -> Optional[ResolvedPath]:
        """
        Resolve a dotted property path against a root type.

        Args:
            root: Entity type the path starts from
            path: Dotted path of request names ("Category.Publisher.Name")
            include: Resolve an include path. Include paths may traverse
                collection relations and end at a relation; value paths
                (filters, sorts) may do neither.

        Returns:
            ResolvedPath, or None if any segment does not resolve
        """
        if not path:
            return None

        current = root
        resolved = []
        segments = path.split('.')
        for index, segment in enumerate(segments):
            descriptor = self.model(current).lookup(segment) if segment else None
            if descriptor is None:
                logger.debug("Path %r does not resolve on %s at %r", path, root.__name__, segment)
                return None

            last = index == len(segments) - 1
            if not include and (descriptor.many or (last and descriptor.relation)):
                logger.debug("Path %r on %s ends at or crosses relation %r",
                             path, root.__name__, descriptor.name)
                return None

            resolved.append(descriptor)
            current = descriptor.value_type

        return ResolvedPath(root, tuple(resolved))

    def identifier(self, entity_type: type) -> Optional[FieldDescriptor]:
        """Descriptor of the identifier attribute, if the type has one."""
        return self.model(entity_type).identifier

    def clear(self) -> None:
        """Forget all models."""
        with self._lock:
            self._models.clear()


_default_registry: Optional[FieldRegistry] = None
_default_lock = threading.Lock()


def get_field_registry() -> FieldRegistry:
    """Get the default field registry."""
    global _default_registry
    if _default_registry is None:
        with _default_lock:
            if _default_registry is None:
                _default_registry = FieldRegistry()
    return _default_registry
