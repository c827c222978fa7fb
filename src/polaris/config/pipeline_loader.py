"""
YAML loader for declarative pipeline rule documents.

Each entity type owns one YAML file named ``<entity_type>.yml`` inside the
pipelines directory. A file holds either a single pipeline document or a list
of them; every document carries a ``source`` mapping with the rule lists
(defaults, resetters, filters, formatters, completers, transformers,
validators).

Example file (``config/pipelines/user.yml``)::

    - name: user
      source:
        defaults:
          - key: roles
            value: '["reader"]'
        completers:
          - field: key
            function: {name: key_complete}

Behavior:
- Missing file: returns an empty list (no exception)
- Empty file: returns an empty list
- Invalid YAML or wrong shape: raises ValueError naming the file
"""

import os
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

import structlog
import yaml

from polaris.config.settings import get_settings

logger = structlog.get_logger(__name__)

# Environment variable for a custom pipelines directory
PIPELINES_DIR_ENV_VAR = "POS_PIPELINES_DIR"

PipelineDocumentData = Dict[str, Any]


def _get_pipelines_dir() -> Path:
    """
    Get the pipelines directory path.

    Checks POS_PIPELINES_DIR first, then falls back to the configured
    ``pipelines_dir`` setting.
    """
    env_path = os.environ.get(PIPELINES_DIR_ENV_VAR)
    if env_path:
        return Path(env_path)
    return Path(get_settings().pipelines_dir)


def _normalize_documents(
    content: Any, file_path: Path, entity_type: str
) -> List[PipelineDocumentData]:
    if isinstance(content, dict):
        content = [content]

    if not isinstance(content, list):
        raise ValueError(
            f"Invalid pipeline format in {file_path}: "
            f"expected mapping or list, got {type(content).__name__}"
        )

    documents: List[PipelineDocumentData] = []
    for position, item in enumerate(content):
        if not isinstance(item, dict):
            raise ValueError(
                f"Invalid pipeline document #{position} in {file_path}: "
                f"expected mapping, got {type(item).__name__}"
            )
        document = dict(item)
        document.setdefault("name", entity_type)
        if document.get("source") is None:
            document["source"] = {}
        documents.append(document)
    return documents


def load_pipeline_documents(
    entity_type: str,
    pipelines_dir: Optional[Union[str, Path]] = None,
) -> List[PipelineDocumentData]:
    """
    Load the rule documents declared for one entity type.

    Args:
        entity_type: Entity type name; selects ``<entity_type>.yml``.
        pipelines_dir: Optional directory override (defaults to settings).

    Returns:
        List of raw pipeline documents, in file order.

    Raises:
        ValueError: If the file is not valid YAML or has the wrong shape.
    """
    directory = Path(pipelines_dir) if pipelines_dir is not None else _get_pipelines_dir()
    file_path = directory / f"{entity_type}.yml"

    if not file_path.exists():
        logger.debug(
            "pipeline_loader.file_not_found",
            entity_type=entity_type,
            file_path=str(file_path),
        )
        return []

    try:
        with open(file_path, "r", encoding="utf-8") as f:
            content = yaml.safe_load(f)
    except yaml.YAMLError as e:
        logger.error(
            "pipeline_loader.yaml_parse_error",
            entity_type=entity_type,
            file_path=str(file_path),
            error=str(e),
        )
        raise ValueError(f"Invalid YAML in {file_path}: {e}") from e

    if content is None:
        logger.debug(
            "pipeline_loader.empty_file",
            entity_type=entity_type,
            file_path=str(file_path),
        )
        return []

    documents = _normalize_documents(content, file_path, entity_type)
    logger.info(
        "pipeline_loader.loaded",
        entity_type=entity_type,
        file_path=str(file_path),
        documents=len(documents),
    )
    return documents
