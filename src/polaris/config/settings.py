"""
Configuration management for Polaris.

This module provides environment-based configuration using Pydantic BaseSettings,
allowing for flexible deployment across development, testing, and production
environments while keeping credentials out of the code base.
"""

import os
from functools import lru_cache
from pathlib import Path
from typing import Literal

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

# Determine project root for resolving .env by default
PROJECT_ROOT = Path(__file__).resolve().parents[3]
DEFAULT_ENV_FILE = PROJECT_ROOT / ".env"
ENV_FILE_OVERRIDE = os.getenv("POS_ENV_FILE")
if ENV_FILE_OVERRIDE:
    env_file_candidate = Path(ENV_FILE_OVERRIDE).expanduser()
    if not env_file_candidate.is_absolute():
        env_file_candidate = PROJECT_ROOT / env_file_candidate
    SETTINGS_ENV_FILE = env_file_candidate
else:
    SETTINGS_ENV_FILE = DEFAULT_ENV_FILE


class Settings(BaseSettings):
    """
    Application settings with environment variable support.

    Environment variables are automatically loaded with the POS_ prefix.
    For example, POS_ELASTICSEARCH_URL will override the elasticsearch_url
    setting.

    Unprefixed fields:
    - ENVIRONMENT: Deployment environment (dev, staging, prod)
    - LOG_LEVEL: Logging level (uppercase)
    - MAX_WORKERS: Maximum worker threads used per pipeline phase
    """

    ENVIRONMENT: Literal["dev", "staging", "prod"] = Field(
        default="dev",
        validation_alias="ENVIRONMENT",
        description="Deployment environment",
    )
    LOG_LEVEL: str = Field(
        default="INFO",
        validation_alias="LOG_LEVEL",
        description="Logging level (uppercase)",
    )
    MAX_WORKERS: int = Field(
        default=4,
        ge=1,
        validation_alias="MAX_WORKERS",
        description="Maximum worker threads for concurrent stage execution",
    )

    # Core application settings
    app_name: str = Field(default="Polaris", description="Application name")

    # Logging
    log_to_file: bool = Field(
        default=False, description="Also write logs to a daily rotating file"
    )
    log_dir: str = Field(default="logs", description="Directory for log files")

    # Elasticsearch
    elasticsearch_url: str = Field(
        default="http://localhost:9200", description="Elasticsearch base URL"
    )
    elasticsearch_timeout: int = Field(
        default=30, description="Elasticsearch request timeout in seconds"
    )
    index_prefix: str = Field(
        default="pos", description="Prefix prepended to every entity index name"
    )

    # Search / pagination
    search_default_size: int = Field(
        default=20, ge=1, description="Default page size for searches"
    )
    search_tie_breaker: str = Field(
        default="_id",
        description="Unique field appended (descending) to every sort for keyset paging",
    )

    # Rule documents
    pipelines_dir: str = Field(
        default="./config/pipelines",
        description="Directory holding one YAML rule-document file per entity type",
    )

    # Object storage (MinIO / S3)
    minio_host: str = Field(default="localhost", description="MinIO host")
    minio_port: int = Field(default=9000, description="MinIO port")
    minio_access_key: str = Field(default="", description="MinIO access key")
    minio_secret_key: str = Field(default="", description="MinIO secret key")
    minio_secure: bool = Field(default=False, description="Use HTTPS for MinIO")
    minio_default_bucket: str = Field(
        default="posbucket", description="Bucket used for uploaded files"
    )

    # Secrets
    default_password: str = Field(
        default="default_pos_password",
        description="Password hashed by secret completers when none is provided",
    )
    secret_hash_iterations: int = Field(
        default=100_000, ge=1, description="PBKDF2 iterations for secret hashing"
    )

    @field_validator("LOG_LEVEL")
    @classmethod
    def normalize_log_level(cls, v: str) -> str:
        return v.strip().upper() or "INFO"

    @field_validator("index_prefix")
    @classmethod
    def validate_index_prefix(cls, v: str) -> str:
        if not v or not v.strip():
            raise ValueError("index_prefix cannot be empty")
        return v.strip()

    @property
    def minio_endpoint_url(self) -> str:
        scheme = "https" if self.minio_secure else "http"
        return f"{scheme}://{self.minio_host}:{self.minio_port}"

    def index_name(self, entity_type: str) -> str:
        """Return the index holding documents of ``entity_type``."""
        return f"{self.index_prefix}_{entity_type}"

    model_config = SettingsConfigDict(
        env_prefix="POS_",
        env_file=str(SETTINGS_ENV_FILE),
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )


@lru_cache()
def get_settings() -> Settings:
    """
    Get cached settings instance.

    Uses LRU cache to ensure settings are loaded once and reused across
    the application lifecycle.

    Returns:
        Settings instance with loaded configuration
    """
    return Settings()
