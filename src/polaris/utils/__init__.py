"""Shared utilities: path access, templating and structured logging."""

from .paths import (
    build_nested,
    find_value,
    iter_matches,
    locate,
    merge_with_replacement,
    split_path,
)
from .templating import parse_json_or_text, render_template, render_value

__all__ = [
    "build_nested",
    "find_value",
    "iter_matches",
    "locate",
    "merge_with_replacement",
    "split_path",
    "parse_json_or_text",
    "render_template",
    "render_value",
]
