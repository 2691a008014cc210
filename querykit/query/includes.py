"""
Flattening of include graphs into dotted navigation paths.
"""

from typing import List, Optional

from .ast import IncludeGraph, normalize_property


def flatten_includes(graph: Optional[IncludeGraph]) -> List[str]:
    """
    Flatten an include graph into leaf paths, depth-first in key order.

    Intermediate nodes are not emitted on their own; loading a leaf path
    loads every relation along it. A node whose child is an empty object
    has no leaves and contributes nothing.

    Example:
        >>> flatten_includes({"author": None, "category": {"publisher": None}})
        ['Author', 'Category.Publisher']
    """
    paths: List[str] = []
    if graph:
        _walk(graph, "", paths)
    return paths


def _walk(node: IncludeGraph, prefix: str, paths: List[str]) -> None:
    for key, child in node.items():
        path = prefix + normalize_property(key)
        if child is not None:
            _walk(child, path + ".", paths)
        else:
            paths.append(path)
