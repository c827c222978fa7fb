"""Shared fixtures: settings isolation and an in-memory index client.

The fake client implements the ``IndexClient`` contract closely enough for
pagination tests: multi-key sorting, ``search_after`` and ``search_before``
(hits of a backward page come back in page order), plus a small subset of
the ``where`` DSL (field equality, lists, ``$and``).
"""

from __future__ import annotations

import copy
import functools
import itertools
from typing import Any, Dict, List, Mapping, Optional

import pytest

from polaris.config.settings import Settings, get_settings
from polaris.domain.pipelines.registry import get_stage_registry
from polaris.utils.paths import find_value

# Load built-in stage functions once for every test module
get_stage_registry()


def _where_matches(source: Mapping[str, Any], where: Optional[Mapping[str, Any]]) -> bool:
    for key, expected in (where or {}).items():
        if key == "$and":
            if not all(_where_matches(source, item) for item in expected):
                return False
            continue
        if key == "$or":
            if not any(_where_matches(source, item) for item in expected):
                return False
            continue
        actual = find_value(source, key)
        if isinstance(expected, list):
            if actual not in expected:
                return False
        elif actual != expected:
            return False
    return True


def _compare(left: List[Any], right: List[Any], orders: List[str]) -> int:
    for a, b, order in zip(left, right, orders):
        if a == b:
            continue
        if a is None or (b is not None and a < b):
            result = -1
        else:
            result = 1
        return result if order == "asc" else -result
    return 0


class FakeIndexClient:
    """In-memory ``IndexClient`` recording every call."""

    def __init__(self, mappings: Optional[Dict[str, Any]] = None):
        self.mappings: Dict[str, Any] = mappings or {}
        self.documents: Dict[str, Dict[str, Dict[str, Any]]] = {}
        self.calls: List[tuple] = []
        self.mapping_error: Optional[Exception] = None
        self.search_error: Optional[Exception] = None
        self._ids = itertools.count(1)

    # --- IndexClient -------------------------------------------------------

    def fetch_mapping(self, index: str, entity_type: str) -> Dict[str, Any]:
        self.calls.append(("fetch_mapping", index, entity_type))
        if self.mapping_error is not None:
            raise self.mapping_error
        return copy.deepcopy(self.mappings.get(index, {}))

    def write(
        self, index: str, entity_type: str, doc_id: Optional[str], document: Mapping[str, Any]
    ) -> Dict[str, Any]:
        self.calls.append(("write", index, doc_id))
        doc_id = doc_id or f"generated-{next(self._ids)}"
        self.documents.setdefault(index, {})[doc_id] = copy.deepcopy(dict(document))
        return {"_id": doc_id, "result": "created"}

    def get(self, index: str, doc_id: str) -> Optional[Dict[str, Any]]:
        self.calls.append(("get", index, doc_id))
        source = self.documents.get(index, {}).get(doc_id)
        if source is None:
            return None
        return {"_id": doc_id, "_source": copy.deepcopy(source)}

    def delete(self, index: str, doc_id: str) -> bool:
        self.calls.append(("delete", index, doc_id))
        return self.documents.get(index, {}).pop(doc_id, None) is not None

    def search(self, index: str, body: Mapping[str, Any]) -> Dict[str, Any]:
        self.calls.append(("search", index, copy.deepcopy(dict(body))))
        if self.search_error is not None:
            raise self.search_error

        fields: List[str] = []
        orders: List[str] = []
        for term in body.get("sort") or []:
            for field, order in term.items():
                fields.append(field)
                orders.append(order)

        hits = []
        for doc_id, source in self.documents.get(index, {}).items():
            if not _where_matches(source, body.get("where")):
                continue
            keys = [doc_id if field == "_id" else find_value(source, field) for field in fields]
            hits.append({"_id": doc_id, "_source": copy.deepcopy(source), "sort": keys})

        hits.sort(key=functools.cmp_to_key(lambda a, b: _compare(a["sort"], b["sort"], orders)))
        total = len(hits)
        size = body.get("size", 20)

        if body.get("search_before"):
            cursor = list(body["search_before"])
            page = [hit for hit in hits if _compare(hit["sort"], cursor, orders) < 0][-size:]
        elif body.get("search_after"):
            cursor = list(body["search_after"])
            page = [hit for hit in hits if _compare(hit["sort"], cursor, orders) > 0][:size]
        else:
            page = hits[:size]

        return {"hits": page, "total": total}

    # --- helpers -------------------------------------------------------------

    def add(self, index: str, doc_id: str, source: Dict[str, Any]) -> None:
        self.documents.setdefault(index, {})[doc_id] = copy.deepcopy(source)


@pytest.fixture
def settings() -> Settings:
    """Settings built from defaults only (no .env, no POS_ variables)."""
    return Settings(_env_file=None, MAX_WORKERS=4)


@pytest.fixture(autouse=True)
def _clear_settings_cache():
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


@pytest.fixture
def user_mapping() -> Dict[str, Any]:
    return {
        "pos_user": {
            "mappings": {
                "properties": {
                    "email": {"type": "keyword"},
                    "name": {"type": "text"},
                    "key": {"type": "keyword"},
                    "roles": {"type": "keyword"},
                    "status": {"type": "keyword"},
                    "password": {"type": "keyword"},
                    "profile": {
                        "properties": {
                            "age": {"type": "integer"},
                            "locale": {"type": "keyword"},
                            "initials": {"type": "keyword"},
                        }
                    },
                }
            }
        }
    }


@pytest.fixture
def fake_client(user_mapping) -> FakeIndexClient:
    return FakeIndexClient(mappings={"pos_user": user_mapping})


@pytest.fixture
def index_client_factory():
    """Build fresh fake clients, e.g. once per hypothesis example."""
    return FakeIndexClient
