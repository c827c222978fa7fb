"""
Builders for the ``where`` clause of search requests.

Filters are JSON strings (as found in rule documents and in the
``seso_filter`` query parameter) combined conjunctively with aggregate
filters and with the rendered search or default query.
"""

import json
from typing import Any, Dict, Iterable, List, Mapping, Optional, Union

from polaris.utils.templating import render_template

BOOL_KEY = "__bool"
DEFAULT_OPERATOR = "$and"

FilterLike = Union[str, Mapping[str, Any]]


def _parse_filter(value: FilterLike) -> Any:
    if isinstance(value, str):
        return json.loads(value)
    return dict(value)


def _is_blank(value: Any) -> bool:
    return value is None or (isinstance(value, (dict, list, tuple, str)) and len(value) == 0)


def escape_search_text(text: str) -> str:
    """Escape double quotes so the text can sit inside a JSON template."""
    return text.replace('"', '\\"')


def build_where(
    filters: Optional[Iterable[FilterLike]] = None,
    extra_filters: Optional[Mapping[str, Any]] = None,
    search_query: Optional[str] = None,
    search_text: Optional[str] = None,
    default_query: Optional[str] = None,
    search_context: Optional[Mapping[str, Any]] = None,
) -> Optional[Dict[str, Any]]:
    """
    Combine filters and the search query into one ``where`` object.

    Args:
        filters: JSON filter strings (or dicts), all of which must match
        extra_filters: Grouped aggregate filters (see ``group_extra_filters``)
        search_query: Template rendered with ``search`` when text is typed
        search_text: Text typed by the user
        default_query: Template used when no text is typed; None disables it
        search_context: Extra template values for ``search_query``

    Returns:
        The ``where`` object, or None when there is nothing to search
        (no text, no filters and no default query).

    Example:
        >>> build_where(['{"type": "book"}'], search_query='{"$match": {"title": "{{ search }}"}}',
        ...             search_text='say "hi"')
        {'$and': [{'type': 'book'}, {'$match': {'title': 'say "hi"'}}]}
    """
    parsed: List[Any] = [_parse_filter(item) for item in filters or []]
    extra = dict(extra_filters or {})
    constrained = bool(parsed) or bool(extra)

    where: Dict[str, Any] = {}
    if parsed:
        where["$and"] = parsed
    if extra:
        where.setdefault("$and", []).append(extra)

    text = (search_text or "").strip()
    if not text:
        if default_query is None:
            return where if constrained else None
        query = json.loads(render_template(default_query))
    else:
        if search_query is None:
            raise ValueError("A search query template is required to search for text")
        context = {**dict(search_context or {}), "search": escape_search_text(text)}
        query = json.loads(render_template(search_query, context))

    if not query:
        return where
    if constrained:
        where["$and"].append(query)
        return where
    return query


def group_extra_filters(content: Optional[Mapping[str, Any]], dot_replacer: str = "*") -> Dict[str, List[Dict[str, Any]]]:
    """
    Group aggregate filter objects by their ``__bool`` operator.

    ``content`` maps aggregate names to objects whose keys are field paths
    written with ``dot_replacer`` instead of dots, plus the ``__bool``
    operator. Objects with no value besides the operator are ignored. The
    first object joins the group of the second one.

    Example:
        >>> group_extra_filters({
        ...     "types": {"__bool": "$or", "type": ["book"]},
        ...     "years": {"__bool": "$or", "date*year": [2020]},
        ... })
        {'$or': [{'date.year': [2020]}, {'type': ['book']}]}
    """
    objects: List[Dict[str, Any]] = []
    for value in (content or {}).values():
        if not isinstance(value, Mapping):
            continue
        cleaned = {
            key if key == BOOL_KEY else key.replace(dot_replacer, "."): item
            for key, item in value.items()
            if not _is_blank(item)
        }
        if set(cleaned) - {BOOL_KEY}:
            objects.append(cleaned)

    grouped: Dict[str, List[Dict[str, Any]]] = {}
    first: Optional[Dict[str, Any]] = None
    for position, item in enumerate(objects):
        operator = item.pop(BOOL_KEY, None) or DEFAULT_OPERATOR
        if position == 0 and len(objects) > 1:
            first = item
            continue
        grouped.setdefault(operator, []).append(item)
        if position == 1 and first is not None:
            grouped[operator].append(first)
    return grouped
