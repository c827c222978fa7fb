"""
Elasticsearch connector exceptions.
"""

from typing import Optional


class IndexClientError(Exception):
    """Base exception for index client errors."""

    retryable = False

    def __init__(self, message: str, index: Optional[str] = None, status_code: Optional[int] = None):
        self.index = index
        self.status_code = status_code
        super().__init__(message)


class IndexNotFoundError(IndexClientError):
    """Raised when the index or document does not exist (404)."""

    pass


class IndexUnavailableError(IndexClientError):
    """Raised when the cluster cannot be reached or answers with a 5xx."""

    retryable = True
