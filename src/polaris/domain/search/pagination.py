"""
Keyset pagination over sorted search results.

A ``SearchSession`` turns the state of one client search (page, size, sort,
filters, cursor) into index requests and derives the next cursor from the
sort keys of the last response:

- sorting or resizing resets to page 1 and clears the cursor
- paging forward uses ``["after", *sort keys of the last hit]``
- paging backward uses ``["before", *sort keys of the first hit]``

Every request sorts by a unique tie-breaker field last, so the order is total
and no row is duplicated or skipped when leading sort values tie.
"""

import json
from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional, Sequence

from polaris.config.settings import Settings, get_settings
from polaris.utils.logging import get_logger

from .query import build_where

logger = get_logger(__name__)

AFTER = "after"
BEFORE = "before"
SORT_ORDERS = ("asc", "desc")

DEFAULT_PAGE = 1
DEFAULT_SIZE = 20


class PaginationError(Exception):
    """Raised when a page transition cannot be derived from the session state."""


def format_cursor(sorts: Sequence[Sequence[Any]], backward: bool) -> List[Any]:
    """
    Build a cursor from the sort keys of a page, one entry per hit.

    >>> format_cursor([[3, "c"], [2, "b"]], backward=False)
    ['after', 2, 'b']
    >>> format_cursor([[3, "c"], [2, "b"]], backward=True)
    ['before', 3, 'c']
    """
    if not sorts:
        raise PaginationError("Cannot derive a cursor from a page without hits")
    keys = sorts[0] if backward else sorts[-1]
    if not keys:
        raise PaginationError("Hits carry no sort keys; was the request sorted?")
    return [BEFORE if backward else AFTER, *keys]


def _as_int(value: Any, default: int) -> int:
    try:
        number = int(value)
    except (TypeError, ValueError):
        return default
    return number if number >= 1 else default


def _as_list(value: Any) -> List[Any]:
    if value is None:
        return []
    if isinstance(value, (list, tuple)):
        return list(value)
    return [value]


def _parse_cursor(value: Any) -> Optional[List[Any]]:
    if value in (None, "", []):
        return None
    if isinstance(value, str):
        try:
            value = json.loads(value)
        except ValueError:
            return None
    cursor = _as_list(value)
    if len(cursor) < 2 or cursor[0] not in (AFTER, BEFORE):
        return None
    return cursor


@dataclass
class SearchState:
    """
    State of one search session, mirrored in the ``seso_*`` query parameters.

    ``current`` and ``cursor`` always describe the last request issued.
    """

    current: int = DEFAULT_PAGE
    cursor: Optional[List[Any]] = None
    sort: Optional[str] = None
    order: Optional[str] = None
    size: int = DEFAULT_SIZE
    filters: List[Any] = field(default_factory=list)
    extra_filters: Dict[str, Any] = field(default_factory=dict)
    typed_search: str = ""

    @classmethod
    def from_query(
        cls,
        query: Optional[Mapping[str, Any]],
        default_filters: Optional[Sequence[Any]] = None,
        default_size: int = DEFAULT_SIZE,
    ) -> "SearchState":
        """Read the state from client query parameters, repairing bad values."""
        query = query or {}
        order = query.get("seso_order")
        if order is not None and order not in SORT_ORDERS:
            order = "asc"

        filters = query.get("seso_filter")
        return cls(
            current=_as_int(query.get("seso_current"), DEFAULT_PAGE),
            cursor=_parse_cursor(query.get("seso_paginate")),
            sort=query.get("seso_sort") or None,
            order=order,
            size=_as_int(query.get("seso_size"), default_size),
            filters=_as_list(filters) if filters is not None else list(default_filters or []),
            typed_search=str(query.get("s") or "").strip(),
        )

    def to_query(self) -> Dict[str, Any]:
        query: Dict[str, Any] = {
            "seso_current": self.current,
            "seso_size": self.size,
            "seso_filter": list(self.filters),
            "s": self.typed_search,
        }
        if self.cursor:
            query["seso_paginate"] = list(self.cursor)
        if self.sort:
            query["seso_sort"] = self.sort
            query["seso_order"] = self.order or "asc"
        return query


class SearchSession:
    """
    Single-writer pagination state machine for one client search.

    Args:
        state: Initial state (e.g. ``SearchState.from_query(...)``)
        search_query: Template rendered with ``search`` for typed text
        default_query: Template used without typed text; None disables
            searching without text or filters
        default_sorts: Sort terms appended after the user sort
        tie_breaker: Unique field sorted descending last
            (defaults to ``search_tie_breaker``)
    """

    def __init__(
        self,
        state: Optional[SearchState] = None,
        *,
        search_query: Optional[str] = None,
        default_query: Optional[str] = None,
        default_sorts: Optional[Sequence[Mapping[str, Any]]] = None,
        tie_breaker: Optional[str] = None,
        settings: Optional[Settings] = None,
    ):
        settings = settings or get_settings()
        self.state = state or SearchState(size=settings.search_default_size)
        self.search_query = search_query
        self.default_query = default_query
        self.default_sorts = [dict(item) for item in default_sorts or []]
        self.tie_breaker = tie_breaker or settings.search_tie_breaker
        self._hits: Optional[List[Mapping[str, Any]]] = None
        self._in_flight = False

    @property
    def in_flight(self) -> bool:
        return self._in_flight

    def _reset(self) -> None:
        self.state.current = DEFAULT_PAGE
        self.state.cursor = None
        self._hits = None

    def sort(self, field_name: str, order: Optional[str] = None) -> SearchState:
        """Sort by ``field_name``; resets to the first page."""
        order = order or self.next_order(field_name)
        if order not in SORT_ORDERS:
            raise ValueError(f"Sort order must be one of {SORT_ORDERS}, got {order!r}")
        self.state.sort = field_name
        self.state.order = order
        self._reset()
        return self.state

    def resize(self, size: int) -> SearchState:
        """Change the page size; resets to the first page."""
        if int(size) < 1:
            raise ValueError("Page size must be at least 1")
        self.state.size = int(size)
        self._reset()
        return self.state

    def next_order(self, field_name: str) -> str:
        """Order to use when the user clicks ``field_name``: toggles the active sort."""
        if self.state.sort == field_name and self.state.order == "asc":
            return "desc"
        return "asc"

    def change_page(self, new_page: int) -> SearchState:
        """
        Move to ``new_page`` using the sort keys of the last recorded response.

        Raises:
            PaginationError: While a request is in flight, before any
                response was recorded, or when ``new_page`` is not adjacent
                to the current page
        """
        if self._in_flight:
            raise PaginationError("A search request is already in flight")
        if self._hits is None:
            raise PaginationError("No search response recorded to paginate from")
        if new_page == self.state.current:
            return self.state
        # A cursor only reaches the neighbouring page
        if new_page < 1 or abs(new_page - self.state.current) != 1:
            raise PaginationError(
                f"Cannot move from page {self.state.current} to page {new_page}"
            )

        backward = new_page < self.state.current
        cursor = format_cursor([hit.get("sort") or [] for hit in self._hits], backward)
        self.state.cursor = cursor
        self.state.current = new_page
        logger.debug("search.page_changed", page=new_page, direction=cursor[0])
        return self.state

    def build_request(self, search_text: Optional[str] = None) -> Optional[Dict[str, Any]]:
        """
        Build the search body for the current state and mark it in flight.

        Returns None when there is nothing to search for.
        """
        if self._in_flight:
            raise PaginationError("A search request is already in flight")

        if search_text is not None:
            self.state.typed_search = search_text.strip()

        where = build_where(
            self.state.filters,
            self.state.extra_filters,
            self.search_query,
            self.state.typed_search,
            self.default_query,
        )
        if where is None:
            return None

        body: Dict[str, Any] = {"size": self.state.size, "sort": self.sort_terms(), "where": where}
        if self.state.cursor:
            key = "search_before" if self.state.cursor[0] == BEFORE else "search_after"
            body[key] = list(self.state.cursor[1:])

        # The previous response must not be reused for the next cursor
        self._hits = None
        self._in_flight = True
        return body

    def sort_terms(self) -> List[Dict[str, Any]]:
        terms: List[Dict[str, Any]] = []
        if self.state.sort:
            terms.append({self.state.sort: self.state.order or "asc"})
        terms.extend(dict(item) for item in self.default_sorts)
        if not any(self.tie_breaker in term for term in terms):
            terms.append({self.tie_breaker: "desc"})
        return terms

    def record_response(self, response: Mapping[str, Any]) -> List[Mapping[str, Any]]:
        """Store the hits of the response to the in-flight request."""
        self._hits = list(response.get("hits") or [])
        self._in_flight = False
        return self._hits

    def abort(self) -> None:
        """Forget the in-flight request (e.g. after a transport failure)."""
        self._in_flight = False
