"""
Formatter stage functions.

A formatter rewrites the value already present at its field. Every formatter
returned by a constructor is called as ``func(value, entity, field, context)``
and its return value replaces the matched leaf.
"""

import copy
from functools import partial
from typing import Any, Callable, Dict, Mapping

from polaris.utils.templating import render_value

from ..coercion import NUMERIC_TYPES, coerce
from ..registry import StageKind, stage
from ..types import Entity

FormatterFunc = Callable[[Any, Entity, str, Mapping[str, Any]], Any]


def _is_empty(value: Any) -> bool:
    if value is None or value == "":
        return True
    if isinstance(value, (list, tuple)):
        return len(value) == 0
    if isinstance(value, dict):
        return all(_is_empty(item) for item in value.values())
    return False


def unwrap_object_array(value: Any) -> Any:
    """Turn an object-as-array (``{"0": a, "1": b}``) into a list."""
    if value is None:
        return []
    if isinstance(value, list):
        return value
    if isinstance(value, dict):
        keys = list(value.keys())
        if keys and all(str(key).isdigit() for key in keys):
            return [value[key] for key in sorted(keys, key=lambda k: int(k))]
        return list(value.values())
    return [value]


def drop_empty(value: Any) -> Any:
    """Remove null, empty and all-empty entries from a list or dict."""
    if isinstance(value, list):
        return [item for item in value if not _is_empty(item)]
    if isinstance(value, dict):
        return {key: item for key, item in value.items() if not _is_empty(item)}
    return value


@stage(StageKind.FORMATTER, "oarray_to_array", "Unwrap an object-array into a list")
def oarray_to_array() -> FormatterFunc:
    def _format(value: Any, entity: Entity, field: str, context: Mapping[str, Any]) -> Any:
        return unwrap_object_array(value)

    return _format


@stage(
    StageKind.FORMATTER,
    "filter_empty_or_null_objects",
    "Drop null or empty objects from a list",
)
def filter_empty_or_null_objects() -> FormatterFunc:
    def _format(value: Any, entity: Entity, field: str, context: Mapping[str, Any]) -> Any:
        return drop_empty(value)

    return _format


@stage(StageKind.FORMATTER, "format_string", "Format the value with a fixed pattern")
def format_string(pattern: Any) -> FormatterFunc:
    template = str(pattern)

    def _format(value: Any, entity: Entity, field: str, context: Mapping[str, Any]) -> Any:
        if value is None:
            return None
        return template.format(value)

    return _format


def _capitalize(value: Any) -> Any:
    return value.capitalize() if isinstance(value, str) else value


def _trim(value: Any) -> Any:
    return value.strip() if isinstance(value, str) else value


def _lower(value: Any) -> Any:
    return value.lower() if isinstance(value, str) else value


def _upper(value: Any) -> Any:
    return value.upper() if isinstance(value, str) else value


def _to_string(value: Any) -> Any:
    return value if value is None else str(value)


NAMED_TRANSFORMS: Dict[str, Callable[[Any], Any]] = {
    "string": _to_string,
    "lowercase": _lower,
    "uppercase": _upper,
    "trim": _trim,
    "capitalize": _capitalize,
}
for _kind in ("boolean",) + NUMERIC_TYPES:
    NAMED_TRANSFORMS[_kind] = partial(coerce, declared_type=_kind)


@stage(StageKind.FORMATTER, "generic_formatter", "Constant, named transform or template")
def generic_formatter(argument: Any) -> FormatterFunc:
    """
    Build a formatter from a single argument.

    - a non-string argument replaces the value with that constant
    - a string naming a transform (``integer``, ``lowercase``...) converts
      the current value
    - any other string is a template rendered over the entity, with the
      current value available as ``value``
    """
    if not isinstance(argument, str):

        def _constant(value: Any, entity: Entity, field: str, context: Mapping[str, Any]) -> Any:
            return copy.deepcopy(argument)

        return _constant

    transform = NAMED_TRANSFORMS.get(argument.strip().lower())
    if transform is not None:

        def _transform(value: Any, entity: Entity, field: str, context: Mapping[str, Any]) -> Any:
            return transform(value)

        return _transform

    def _template(value: Any, entity: Entity, field: str, context: Mapping[str, Any]) -> Any:
        return render_value(argument, {**entity, "value": value})

    return _template
