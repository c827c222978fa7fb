"""
structlog setup shared by every Polaris module.

Events are rendered as one JSON object per line with an ISO timestamp, the
level and the logger name. Values under credential-like keys (passwords,
tokens, secrets, access keys) are redacted at any nesting depth, inside
logged entities too.

Output goes to stdout, and additionally to ``<log_dir>/polaris-YYYYMMDD.log``
(rotated at midnight) when ``POS_LOG_TO_FILE`` is set.

Usage:
    >>> from polaris.utils.logging import get_logger
    >>> logger = get_logger(__name__)
    >>> logger.info("pipeline.execution.started", entity_type="user")
"""

import logging
import re
from datetime import date
from logging.handlers import TimedRotatingFileHandler
from pathlib import Path
from typing import Any, List, Optional, Tuple

import structlog
from pydantic import ValidationError
from structlog.types import EventDict, Processor

from polaris.config.settings import get_settings

SENSITIVE_KEY = re.compile(r"password|token|secret|access_key|api_key", re.IGNORECASE)
REDACTED_VALUE = "[REDACTED]"
LOG_FILE_PREFIX = "polaris"


def redact_sensitive(value: Any) -> Any:
    """
    Return a copy of ``value`` with credential-like keys redacted.

    Dicts are walked recursively, lists element by element.

    Example:
        >>> redact_sensitive({"password": "hunter2", "profile": {"api_key": "k"}, "email": "a@b.co"})
        {'password': '[REDACTED]', 'profile': {'api_key': '[REDACTED]'}, 'email': 'a@b.co'}
    """
    if isinstance(value, dict):
        return {
            key: REDACTED_VALUE if SENSITIVE_KEY.search(str(key)) else redact_sensitive(item)
            for key, item in value.items()
        }
    if isinstance(value, list):
        return [redact_sensitive(item) for item in value]
    return value


def _redact_processor(logger: Any, method_name: str, event_dict: EventDict) -> EventDict:
    return redact_sensitive(dict(event_dict))


def _output_settings() -> Tuple[int, Optional[Path]]:
    try:
        settings = get_settings()
    except ValidationError:
        # Malformed environment: INFO on stdout only
        return logging.INFO, None
    level = getattr(logging, settings.LOG_LEVEL, logging.INFO)
    return level, Path(settings.log_dir) if settings.log_to_file else None


def _file_handler(log_dir: Path) -> logging.Handler:
    log_dir.mkdir(parents=True, exist_ok=True)
    path = log_dir / f"{LOG_FILE_PREFIX}-{date.today():%Y%m%d}.log"
    return TimedRotatingFileHandler(str(path), when="midnight", backupCount=30, encoding="utf-8")


def configure_logging() -> None:
    """Install handlers on the root logger and configure structlog."""
    level, log_dir = _output_settings()

    handlers: List[logging.Handler] = [logging.StreamHandler()]
    if log_dir is not None:
        handlers.append(_file_handler(log_dir))
    for handler in handlers:
        handler.setLevel(level)
        handler.setFormatter(logging.Formatter("%(message)s"))
        logging.root.addHandler(handler)
    logging.root.setLevel(level)

    processors: List[Processor] = [
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.processors.TimeStamper(fmt="iso"),
        _redact_processor,
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.JSONRenderer(default=str),
    ]
    structlog.configure(
        processors=processors,
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )


configure_logging()


def get_logger(name: str) -> Any:
    """Return a structlog logger named after the calling module."""
    return structlog.get_logger(name)
