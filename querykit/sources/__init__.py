"""
Entity sources: where compiled queries run.
"""

from .base import EntitySource
from .memory import InMemorySource
from .orm import OrmSource, AsyncOrmSource, SqlAlchemyVisitor

__all__ = [
    'EntitySource',
    'InMemorySource',
    'OrmSource',
    'AsyncOrmSource',
    'SqlAlchemyVisitor',
]
