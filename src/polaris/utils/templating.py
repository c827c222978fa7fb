"""
Template rendering for rule documents and search queries.

Rule values such as ``'{"roles": ["reader"]}'`` or search queries such as
``'{"$match": {"title": "{{ search }}"}}'`` are rendered with jinja2 in a
sandboxed environment, since they come from configuration rather than code.
"""

import json
from functools import lru_cache
from typing import Any, Mapping, Optional

from jinja2 import Template
from jinja2.sandbox import SandboxedEnvironment

_environment = SandboxedEnvironment(autoescape=False, keep_trailing_newline=True)


@lru_cache(maxsize=512)
def _compile(source: str) -> Template:
    return _environment.from_string(source)


def render_template(source: Any, context: Optional[Mapping[str, Any]] = None) -> str:
    """Render ``source`` with ``context`` (an empty context by default)."""
    return _compile(str(source)).render(**dict(context or {}))


def parse_json_or_text(text: str) -> Any:
    """Return ``json.loads(text)`` when it parses, else ``text`` unchanged."""
    try:
        return json.loads(text)
    except (TypeError, ValueError):
        return text


def render_value(source: Any, context: Optional[Mapping[str, Any]] = None) -> Any:
    """Render a template and re-parse the output as JSON when possible."""
    return parse_json_or_text(render_template(source, context))
