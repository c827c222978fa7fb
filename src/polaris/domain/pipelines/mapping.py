"""
Field-projection helper over an Elasticsearch mapping.

Decides which fields of an entity are index-native (declared in the mapping)
and which are synthesized by the pipeline only.
"""

from __future__ import annotations

from types import MappingProxyType
from typing import Any, Dict, Iterator, List, Mapping, Optional

from polaris.utils.paths import split_path

OBJECT_TYPES = ("object", "nested")


def extract_properties(raw_mapping: Mapping[str, Any], entity_type: Optional[str] = None) -> Mapping[str, Any]:
    """
    Return the ``properties`` tree of a mapping response.

    Accepts the full ``GET /<index>/_mapping`` response, a single index entry,
    a typed (pre-7.x) ``{"mappings": {"<type>": {...}}}`` entry or a bare
    ``{"properties": ...}`` dict.
    """
    node: Any = raw_mapping
    for _ in range(4):
        if not isinstance(node, Mapping):
            return {}
        if "properties" in node:
            return node["properties"] or {}
        if "mappings" in node:
            node = node["mappings"]
            continue
        if entity_type and entity_type in node:
            node = node[entity_type]
            continue
        if len(node) == 1:
            node = next(iter(node.values()))
            continue
        return {}
    return {}


class EntityMapping:
    """
    Immutable wrapper around the mapped fields of one entity type.

    Example:
        >>> mapping = EntityMapping({"properties": {"user": {"properties": {"age": {"type": "integer"}}}}})
        >>> mapping.type_of("user.age")
        'integer'
        >>> mapping.is_native("user.nickname")
        False
    """

    def __init__(self, raw_mapping: Mapping[str, Any], entity_type: Optional[str] = None):
        properties = extract_properties(raw_mapping or {}, entity_type)
        fields: Dict[str, str] = {}
        self._flatten(properties, [], fields)
        self._fields: Mapping[str, str] = MappingProxyType(fields)

    def _flatten(self, properties: Mapping[str, Any], prefix: List[str], out: Dict[str, str]) -> None:
        for name, definition in properties.items():
            path = prefix + [name]
            definition = definition or {}
            children = definition.get("properties")
            out[".".join(path)] = definition.get("type", "object" if children else "keyword")
            if children:
                self._flatten(children, path, out)

    @property
    def fields(self) -> Mapping[str, str]:
        """Dotted path to declared type, for every mapped field."""
        return self._fields

    def __contains__(self, path: object) -> bool:
        return isinstance(path, str) and self.is_native(path)

    def __iter__(self) -> Iterator[str]:
        return iter(self._fields)

    def __len__(self) -> int:
        return len(self._fields)

    def _normalize(self, path: str) -> str:
        # wildcards and list indexes do not appear in mapping paths
        return ".".join(s for s in split_path(path) if s != "*" and not s.isdigit())

    def is_native(self, path: str) -> bool:
        return self._normalize(path) in self._fields

    def type_of(self, path: str) -> Optional[str]:
        return self._fields.get(self._normalize(path))

    def project(self, entity: Mapping[str, Any]) -> Dict[str, Any]:
        """Return a copy of ``entity`` restricted to index-native fields."""
        return self._project(entity, [])

    def _project(self, node: Mapping[str, Any], prefix: List[str]) -> Dict[str, Any]:
        result: Dict[str, Any] = {}
        for key, value in node.items():
            path = prefix + [key]
            dotted = ".".join(path)
            if dotted not in self._fields:
                continue
            if self._fields[dotted] in OBJECT_TYPES and isinstance(value, Mapping):
                result[key] = self._project(value, path)
            elif self._fields[dotted] in OBJECT_TYPES and isinstance(value, list):
                result[key] = [
                    self._project(item, path) if isinstance(item, Mapping) else item for item in value
                ]
            else:
                result[key] = value
        return result

    def __repr__(self) -> str:
        return f"EntityMapping(fields={len(self._fields)})"
