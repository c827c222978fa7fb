"""Configuration management for Polaris.

This module provides centralized configuration loaded from environment variables
with validation using Pydantic BaseSettings, plus the loader for declarative
rule documents.

Usage:
    >>> from polaris.config import get_settings
    >>> settings = get_settings()
    >>> print(settings.elasticsearch_url)
"""

from polaris.config.settings import Settings, get_settings
from polaris.config.pipeline_loader import load_pipeline_documents

__all__ = [
    "Settings",
    "get_settings",
    "load_pipeline_documents",
]
