"""Keyset pagination and search query building."""

from .pagination import PaginationError, SearchSession, SearchState, format_cursor
from .query import build_where, escape_search_text, group_extra_filters

__all__ = [
    "PaginationError",
    "SearchSession",
    "SearchState",
    "build_where",
    "escape_search_text",
    "format_cursor",
    "group_extra_filters",
]
