"""Index connectors."""

from .elasticsearch_client import ElasticsearchClient, IndexClient, reverse_sort, translate_where
from .exceptions import IndexClientError, IndexNotFoundError, IndexUnavailableError

__all__ = [
    "ElasticsearchClient",
    "IndexClient",
    "IndexClientError",
    "IndexNotFoundError",
    "IndexUnavailableError",
    "reverse_sort",
    "translate_where",
]
