"""
Dotted-path access into nested entity documents.

Entities are plain JSON-like trees (dicts, lists and scalars). A path is a
dotted string such as ``"authors.*.name"`` split into segments:

- ``"*"`` fans out across every element of a list (or every value of a dict)
- a numeric segment indexes into a list
- any other segment met on a list fans out implicitly across its elements

Absent intermediate segments never raise; they simply produce no match.
"""

from __future__ import annotations

import copy
from typing import Any, Dict, Iterator, List, Sequence, Tuple, Union

WILDCARD = "*"

PathLike = Union[str, Sequence[str]]
Match = Tuple[Any, Any, Any]


def split_path(path: PathLike) -> List[str]:
    """Return ``path`` as a list of segments."""
    if isinstance(path, str):
        return [segment for segment in path.split(".") if segment != ""]
    return list(path)


def _is_index(segment: str) -> bool:
    return segment.isdigit()


def iter_matches(entity: Any, path: PathLike) -> Iterator[Match]:
    """
    Yield ``(parent, key, value)`` for every leaf matched by ``path``.

    ``parent[key]`` is the matched value, so callers can overwrite the leaf in
    place. Matches are produced depth-first in document order.
    """
    segments = split_path(path)
    if not segments:
        return
    yield from _walk(entity, segments, 0)


def _walk(node: Any, segments: List[str], idx: int) -> Iterator[Match]:
    segment = segments[idx]
    last = idx == len(segments) - 1

    if isinstance(node, list):
        if segment == WILDCARD:
            for position, item in enumerate(node):
                if last:
                    yield node, position, item
                else:
                    yield from _walk(item, segments, idx + 1)
        elif _is_index(segment):
            position = int(segment)
            if position < len(node):
                if last:
                    yield node, position, node[position]
                else:
                    yield from _walk(node[position], segments, idx + 1)
        else:
            # implicit fan-out: same segment applied to each element
            for item in node:
                yield from _walk(item, segments, idx)
    elif isinstance(node, dict):
        if segment == WILDCARD:
            for key, item in list(node.items()):
                if last:
                    yield node, key, item
                else:
                    yield from _walk(item, segments, idx + 1)
        elif segment in node:
            if last:
                yield node, segment, node[segment]
            else:
                yield from _walk(node[segment], segments, idx + 1)


def locate(entity: Any, path: PathLike, want_parent: bool = False) -> Iterator[Any]:
    """
    Lazily locate every match of ``path`` inside ``entity``.

    Args:
        entity: Nested document to search.
        path: Dotted path or pre-split segments.
        want_parent: Yield the containing dict/list of each match instead of
            the matched value.

    Returns:
        Generator of values (or parents). For a given path both variants have
        the same length and order, so they can be paired positionally.

    Example:
        >>> doc = {"authors": [{"name": "a"}, {"name": "b"}]}
        >>> list(locate(doc, "authors.*.name"))
        ['a', 'b']
    """
    for parent, _key, value in iter_matches(entity, path):
        yield parent if want_parent else value


def find_value(entity: Any, path: PathLike, default: Any = None) -> Any:
    """Return the first value matched by ``path`` or ``default``."""
    for value in locate(entity, path):
        return value
    return default


def build_nested(path: PathLike, value: Any) -> Dict[str, Any]:
    """
    Build the minimal nested object whose leaf at ``path`` equals ``value``.

    >>> build_nested("a.b", 1)
    {'a': {'b': 1}}
    """
    segments = split_path(path)
    if not segments:
        raise ValueError("Cannot build a nested object from an empty path")

    result: Any = value
    for segment in reversed(segments):
        result = {segment: result}
    return result


def merge_with_replacement(target: Dict[str, Any], source: Dict[str, Any]) -> Dict[str, Any]:
    """
    Deep-merge ``source`` into ``target`` and return ``target``.

    Dict values are merged recursively; any other value at a colliding key is
    replaced by the source value (right-hand precedence, lists included).
    Values taken from ``source`` are deep-copied.
    """
    for key, value in source.items():
        existing = target.get(key)
        if isinstance(existing, dict) and isinstance(value, dict):
            merge_with_replacement(existing, value)
        else:
            target[key] = copy.deepcopy(value)
    return target
