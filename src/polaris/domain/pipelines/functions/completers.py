"""
Completer stage functions.

Completers derive or enrich a field, which may not exist yet. Each stage is
called as ``func(entity, current_value, context)`` once per container located
at the field's parent path; its return value is written at the field's leaf
key. The per-call context carries:

- ``container``: the dict the leaf belongs to
- ``field``: the stage's target path
- ``index_client`` / ``index_prefix``: used by lookups (denormalization)
- ``settings``: application settings, when the caller provides them
"""

import hashlib
import hmac
import re
import secrets
import unicodedata
from typing import Any, Callable, List, Mapping, Optional

from polaris.config.settings import get_settings
from polaris.io.connectors.exceptions import IndexClientError
from polaris.utils.logging import get_logger
from polaris.utils.paths import find_value
from polaris.utils.templating import render_value

from ..exceptions import IndexLookupError
from ..registry import StageKind, stage
from ..types import Entity

logger = get_logger(__name__)

CompleterFunc = Callable[[Entity, Any, Mapping[str, Any]], Any]

_MISSING = object()

KEY_SOURCE_FIELDS = ("name", "label", "title", "value")
HASH_PREFIX = "pbkdf2_sha256"


def _settings(context: Mapping[str, Any]) -> Any:
    return context.get("settings") or get_settings()


def _resolve(path: str, entity: Entity, context: Mapping[str, Any]) -> Any:
    """Look ``path`` up in the stage's container first, then in the entity."""
    container = context.get("container")
    if isinstance(container, dict) and container is not entity:
        value = find_value(container, path, _MISSING)
        if value is not _MISSING:
            return value
    return find_value(entity, path, None)


def slugify(text: Any) -> Optional[str]:
    """ASCII-fold, lower-case and hyphenate ``text``."""
    if text is None:
        return None
    normalized = unicodedata.normalize("NFKD", str(text))
    ascii_text = normalized.encode("ascii", "ignore").decode("ascii").lower()
    slug = re.sub(r"[^a-z0-9]+", "-", ascii_text).strip("-")
    return slug or None


def hash_secret(secret: str, iterations: int, salt: Optional[str] = None) -> str:
    salt = salt or secrets.token_hex(16)
    digest = hashlib.pbkdf2_hmac("sha256", secret.encode("utf-8"), salt.encode("utf-8"), iterations)
    return f"{HASH_PREFIX}${iterations}${salt}${digest.hex()}"


def is_hashed_secret(value: Any) -> bool:
    return isinstance(value, str) and value.startswith(f"{HASH_PREFIX}$") and value.count("$") == 3


def verify_secret(secret: str, hashed: str) -> bool:
    """Check ``secret`` against a value produced by :func:`hash_secret`."""
    if not is_hashed_secret(hashed):
        return False
    _, iterations, salt, _ = hashed.split("$")
    return hmac.compare_digest(hash_secret(secret, int(iterations), salt), hashed)


def make_initials(text: str, suffix: str = ".") -> str:
    """
    >>> make_initials("Jean-Pierre Marie")
    'J.-P. M.'
    """
    words: List[str] = []
    for word in text.split():
        parts = [part[0].upper() + suffix for part in word.split("-") if part]
        if parts:
            words.append("-".join(parts))
    return " ".join(words)


@stage(StageKind.COMPLETER, "generic_complete", "Render a template over the entity")
def generic_complete(template: Any) -> CompleterFunc:
    def _complete(entity: Entity, current: Any, context: Mapping[str, Any]) -> Any:
        return render_value(template, {**entity, "value": current})

    return _complete


@stage(StageKind.COMPLETER, "key_complete", "Derive a normalized key from the entity")
def key_complete() -> CompleterFunc:
    def _complete(entity: Entity, current: Any, context: Mapping[str, Any]) -> Any:
        if current not in (None, ""):
            return slugify(current)

        container = context.get("container")
        source = container if isinstance(container, dict) else entity
        for name in KEY_SOURCE_FIELDS:
            candidate = source.get(name)
            if candidate not in (None, ""):
                return slugify(candidate)
        return current

    return _complete


@stage(StageKind.COMPLETER, "secret_complete", "Hash a secret, or the default password")
def secret_complete() -> CompleterFunc:
    def _complete(entity: Entity, current: Any, context: Mapping[str, Any]) -> Any:
        if is_hashed_secret(current):
            return current
        settings = _settings(context)
        secret = current if current not in (None, "") else settings.default_password
        return hash_secret(str(secret), settings.secret_hash_iterations)

    return _complete


@stage(StageKind.COMPLETER, "denormalization", "Copy a value from a related entity")
def denormalization(
    source_field: str,
    entity_type: str,
    lookup_field: str,
    projection_field: str,
    default: Any = None,
) -> CompleterFunc:
    """
    Copy ``projection_field`` of the ``entity_type`` entity whose
    ``lookup_field`` equals the value found at ``source_field``.

    A list at ``source_field`` yields a list of projections.
    """

    def _lookup(value: Any, context: Mapping[str, Any]) -> Any:
        client = context.get("index_client")
        if client is None:
            raise IndexLookupError("No index client available for denormalization lookup")

        prefix = context.get("index_prefix") or _settings(context).index_prefix
        index = f"{prefix}_{entity_type}"
        body = {"size": 1, "where": {lookup_field: value}}
        try:
            response = client.search(index, body)
        except IndexClientError as exc:
            raise IndexLookupError(f"Lookup in '{index}' failed: {exc}") from exc

        hits = response.get("hits") or []
        if not hits:
            logger.debug(
                "completer.denormalization.no_match",
                index=index,
                lookup_field=lookup_field,
                value=value,
            )
            return default
        return find_value(hits[0].get("_source") or {}, projection_field, default)

    def _complete(entity: Entity, current: Any, context: Mapping[str, Any]) -> Any:
        value = _resolve(source_field, entity, context)
        if value is None:
            return default
        if isinstance(value, list):
            return [_lookup(item, context) for item in value]
        return _lookup(value, context)

    return _complete


@stage(StageKind.COMPLETER, "initial", "Compute initials from another field")
def initial(source_field: str, suffix: Any = ".") -> CompleterFunc:
    suffix_text = suffix if isinstance(suffix, str) else ""

    def _complete(entity: Entity, current: Any, context: Mapping[str, Any]) -> Any:
        value = _resolve(source_field, entity, context)
        if not isinstance(value, str) or not value.strip():
            return current
        return make_initials(value, suffix_text)

    return _complete
