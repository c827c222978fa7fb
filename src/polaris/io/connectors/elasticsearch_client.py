"""
Elasticsearch index client over the REST API.

Implements the ``IndexClient`` contract used by the pipeline assembler,
denormalization completers, the entity service and search sessions:

- ``fetch_mapping(index, entity_type)``
- ``search(index, body)`` -> ``{"hits": [...], "total": int}``
- ``write(index, entity_type, id, document)``
- ``get(index, id)`` / ``delete(index, id)``

Search bodies use the ``where`` DSL (``$and``, ``$or``, ``$not``, field
equality, lists, ``$gt/$gte/$lt/$lte``, ``$exists``, ``$match``) and keyset
paging through ``search_after`` / ``search_before``.
"""

from typing import Any, Dict, List, Mapping, Optional, Protocol, runtime_checkable

import requests

from polaris.config.settings import Settings, get_settings
from polaris.utils.logging import get_logger

from .exceptions import IndexClientError, IndexNotFoundError, IndexUnavailableError

logger = get_logger(__name__)

RANGE_OPERATORS = {"$gt": "gt", "$gte": "gte", "$lt": "lt", "$lte": "lte"}
REVERSED_ORDER = {"asc": "desc", "desc": "asc"}
# Order applied when a sort term names none
NATURAL_ORDER = {"_score": "desc"}


@runtime_checkable
class IndexClient(Protocol):
    """Operations the platform needs from the search index."""

    def fetch_mapping(self, index: str, entity_type: str) -> Dict[str, Any]: ...

    def search(self, index: str, body: Mapping[str, Any]) -> Dict[str, Any]: ...

    def write(
        self, index: str, entity_type: str, doc_id: Optional[str], document: Mapping[str, Any]
    ) -> Dict[str, Any]: ...

    def get(self, index: str, doc_id: str) -> Optional[Dict[str, Any]]: ...

    def delete(self, index: str, doc_id: str) -> bool: ...


# --- where DSL ------------------------------------------------------------------


def _field_condition(field: str, value: Any) -> List[Dict[str, Any]]:
    if value is None:
        return [{"bool": {"must_not": [{"exists": {"field": field}}]}}]
    if isinstance(value, (list, tuple)):
        return [{"terms": {field: list(value)}}]
    if not isinstance(value, Mapping):
        return [{"term": {field: value}}]

    clauses: List[Dict[str, Any]] = []
    bounds = {RANGE_OPERATORS[op]: bound for op, bound in value.items() if op in RANGE_OPERATORS}
    if bounds:
        clauses.append({"range": {field: bounds}})
    for op, operand in value.items():
        if op in RANGE_OPERATORS:
            continue
        if op == "$exists":
            exists = {"exists": {"field": field}}
            clauses.append(exists if operand else {"bool": {"must_not": [exists]}})
        elif op == "$match":
            clauses.append({"match": {field: operand}})
        elif op == "$not":
            clauses.append({"bool": {"must_not": _field_condition(field, operand)}})
        else:
            raise IndexClientError(f"Unsupported operator '{op}' on field '{field}'")
    return clauses


def translate_where(where: Optional[Mapping[str, Any]]) -> Dict[str, Any]:
    """
    Translate a ``where`` object into an Elasticsearch query.

    >>> translate_where({"type": "book", "year": {"$gte": 2020}})
    {'bool': {'must': [{'term': {'type': 'book'}}, {'range': {'year': {'gte': 2020}}}]}}
    """
    if not where:
        return {"match_all": {}}

    clauses: List[Dict[str, Any]] = []
    for key, value in where.items():
        if key == "$and":
            clauses.append({"bool": {"must": [translate_where(item) for item in value]}})
        elif key == "$or":
            clauses.append(
                {"bool": {"should": [translate_where(item) for item in value], "minimum_should_match": 1}}
            )
        elif key == "$not":
            items = value if isinstance(value, (list, tuple)) else [value]
            clauses.append({"bool": {"must_not": [translate_where(item) for item in items]}})
        elif key == "$match":
            if isinstance(value, Mapping):
                clauses.extend({"match": {field: text}} for field, text in value.items())
            else:
                clauses.append({"simple_query_string": {"query": str(value)}})
        elif key.startswith("$"):
            raise IndexClientError(f"Unsupported operator '{key}'")
        else:
            clauses.extend(_field_condition(key, value))

    if len(clauses) == 1:
        return clauses[0]
    return {"bool": {"must": clauses}}


def reverse_sort(sort: List[Any]) -> List[Any]:
    """Flip every sort order, for serving ``search_before`` with ``search_after``."""
    reversed_terms: List[Any] = []
    for term in sort:
        if isinstance(term, str):
            reversed_terms.append({term: REVERSED_ORDER[NATURAL_ORDER.get(term, "asc")]})
            continue
        flipped = {}
        for field, order in term.items():
            if isinstance(order, Mapping):
                options = dict(order)
                natural = NATURAL_ORDER.get(field, "asc")
                options["order"] = REVERSED_ORDER.get(options.get("order", natural), "desc")
                flipped[field] = options
            else:
                flipped[field] = REVERSED_ORDER.get(order, "desc")
        reversed_terms.append(flipped)
    return reversed_terms


# --- Client -----------------------------------------------------------------------


class ElasticsearchClient:
    """
    ``IndexClient`` backed by the Elasticsearch REST API.

    Args:
        base_url: Cluster URL. If None, uses ``elasticsearch_url``
        timeout: Request timeout in seconds. If None, uses settings default
        session: Pre-configured ``requests.Session`` (tests inject a mock)
    """

    def __init__(
        self,
        base_url: Optional[str] = None,
        *,
        timeout: Optional[int] = None,
        session: Optional[requests.Session] = None,
        settings: Optional[Settings] = None,
    ):
        self.settings = settings or get_settings()
        self.base_url = (base_url or self.settings.elasticsearch_url).rstrip("/")
        self.timeout = timeout if timeout is not None else self.settings.elasticsearch_timeout

        self.session = session or requests.Session()
        self.session.headers.update(
            {
                "Accept": "application/json",
                "Content-Type": "application/json; charset=utf-8",
                "User-Agent": f"{self.settings.app_name} index client",
            }
        )

        logger.info("elasticsearch.client_initialized", base_url=self.base_url, timeout=self.timeout)

    def _request(
        self,
        method: str,
        path: str,
        index: Optional[str] = None,
        allow_missing: bool = False,
        **kwargs: Any,
    ) -> Optional[Dict[str, Any]]:
        """
        Send one request and decode the JSON answer.

        Raises:
            IndexNotFoundError: For 404 answers unless ``allow_missing``
            IndexUnavailableError: For connection failures and 5xx answers
            IndexClientError: For any other failure
        """
        url = f"{self.base_url}/{path.lstrip('/')}"
        try:
            response = self.session.request(method, url, timeout=self.timeout, **kwargs)
        except requests.RequestException as exc:
            logger.warning("elasticsearch.request_failed", method=method, url=url, error=str(exc))
            raise IndexUnavailableError(f"Request to Elasticsearch failed: {exc}", index=index) from exc

        status = response.status_code
        if status == 404:
            if allow_missing:
                return None
            logger.warning("elasticsearch.not_found", method=method, url=url)
            raise IndexNotFoundError(f"Not found: {method} {path}", index=index, status_code=status)
        if status >= 500:
            logger.warning("elasticsearch.server_error", method=method, url=url, status_code=status)
            raise IndexUnavailableError(f"Elasticsearch server error: {status}", index=index, status_code=status)
        if status >= 400:
            logger.error(
                "elasticsearch.request_rejected",
                method=method,
                url=url,
                status_code=status,
                body=response.text[:500],
            )
            raise IndexClientError(f"Elasticsearch rejected the request: {status}", index=index, status_code=status)

        try:
            return response.json()
        except ValueError as exc:
            raise IndexClientError("Elasticsearch answered with invalid JSON", index=index, status_code=status) from exc

    def fetch_mapping(self, index: str, entity_type: str) -> Dict[str, Any]:
        """Return the ``GET /<index>/_mapping`` response."""
        return self._request("GET", f"{index}/_mapping", index=index) or {}

    def build_search_body(self, body: Mapping[str, Any]) -> Dict[str, Any]:
        """Translate a platform search body into an Elasticsearch one."""
        request: Dict[str, Any] = {
            "size": body.get("size", self.settings.search_default_size),
            "query": translate_where(body.get("where")),
        }
        sort = list(body.get("sort") or [])
        search_before = body.get("search_before")
        if search_before:
            request["sort"] = reverse_sort(sort)
            request["search_after"] = list(search_before)
        else:
            if sort:
                request["sort"] = sort
            if body.get("search_after"):
                request["search_after"] = list(body["search_after"])
        for key in ("from", "_source", "aggs"):
            if key in body:
                request[key] = body[key]
        return request

    def search(self, index: str, body: Mapping[str, Any]) -> Dict[str, Any]:
        """
        Run a search and return ``{"hits": [...], "total": int}``.

        Hits of a ``search_before`` request are returned in page order.
        """
        request = self.build_search_body(body)
        response = self._request("POST", f"{index}/_search", index=index, json=request) or {}

        hits_section = response.get("hits") or {}
        hits = [
            {
                "_id": hit.get("_id"),
                "_source": hit.get("_source") or {},
                "sort": hit.get("sort") or [],
                "_score": hit.get("_score"),
            }
            for hit in hits_section.get("hits") or []
        ]
        if body.get("search_before"):
            hits.reverse()

        total = hits_section.get("total", len(hits))
        if isinstance(total, Mapping):
            total = total.get("value", len(hits))

        result: Dict[str, Any] = {"hits": hits, "total": total}
        if "aggregations" in response:
            result["aggregations"] = response["aggregations"]
        logger.debug("elasticsearch.search_completed", index=index, hits=len(hits), total=total)
        return result

    def write(
        self,
        index: str,
        entity_type: str,
        doc_id: Optional[str],
        document: Mapping[str, Any],
        refresh: Optional[str] = None,
    ) -> Dict[str, Any]:
        """Index ``document``; a None ``doc_id`` lets Elasticsearch assign one."""
        params = {"refresh": refresh} if refresh else None
        if doc_id is None:
            response = self._request("POST", f"{index}/_doc", index=index, json=dict(document), params=params)
        else:
            response = self._request("PUT", f"{index}/_doc/{doc_id}", index=index, json=dict(document), params=params)
        logger.debug("elasticsearch.document_written", index=index, entity_type=entity_type, doc_id=doc_id)
        return response or {}

    def get(self, index: str, doc_id: str) -> Optional[Dict[str, Any]]:
        """Return ``{"_id", "_source"}`` or None when the document is missing."""
        response = self._request("GET", f"{index}/_doc/{doc_id}", index=index, allow_missing=True)
        if not response or response.get("found") is False:
            return None
        return {"_id": response.get("_id", doc_id), "_source": response.get("_source") or {}}

    def delete(self, index: str, doc_id: str, refresh: Optional[str] = None) -> bool:
        """Delete a document; returns False when it did not exist."""
        params = {"refresh": refresh} if refresh else None
        response = self._request("DELETE", f"{index}/_doc/{doc_id}", index=index, allow_missing=True, params=params)
        return bool(response) and response.get("result") == "deleted"

    def close(self) -> None:
        self.session.close()
