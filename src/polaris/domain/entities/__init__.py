"""Pipeline-driven entity operations."""

from .service import EntityService, log_publisher

__all__ = ["EntityService", "log_publisher"]
