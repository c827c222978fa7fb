"""
Registry of rule functions available to pipeline rule documents.

Rule documents reference stage functions by name. Each name maps to a stage
constructor that receives the coerced argument values and returns the
executable stage function. Constructors register themselves at import time
with the ``@stage`` decorator.
"""

from __future__ import annotations

import inspect
from dataclasses import dataclass
from enum import Enum
from threading import RLock
from typing import Any, Callable, Dict, List, Optional, Sequence

from polaris.utils.logging import get_logger

from .exceptions import PipelineConfigurationError

logger = get_logger(__name__)


class StageKind(Enum):
    """Families of rule functions, one per compiler."""

    FORMATTER = "formatter"
    COMPLETER = "completer"
    TRANSFORMER = "transformer"
    VALIDATOR = "validator"


@dataclass(frozen=True)
class StageDefinition:
    """Registered rule function metadata."""

    name: str
    kind: StageKind
    factory: Callable[..., Callable[..., Any]]
    description: str

    def __post_init__(self) -> None:
        if not callable(self.factory):
            raise ValueError(f"Stage {self.name} must have a callable factory")

    @property
    def signature(self) -> inspect.Signature:
        return inspect.signature(self.factory)

    def required_arguments(self) -> int:
        return sum(
            1
            for param in self.signature.parameters.values()
            if param.default is inspect.Parameter.empty
            and param.kind in (param.POSITIONAL_ONLY, param.POSITIONAL_OR_KEYWORD)
        )

    def max_arguments(self) -> Optional[int]:
        params = self.signature.parameters.values()
        if any(param.kind == param.VAR_POSITIONAL for param in params):
            return None
        return sum(
            1 for param in params if param.kind in (param.POSITIONAL_ONLY, param.POSITIONAL_OR_KEYWORD)
        )


class StageRegistry:
    """
    Registry of stage constructors keyed by ``(kind, name)``.

    A single process-wide instance is populated at import time; tests may
    build their own instance and pass it to the compilers.
    """

    def __init__(self) -> None:
        self._lock = RLock()
        self._definitions: Dict[StageKind, Dict[str, StageDefinition]] = {kind: {} for kind in StageKind}

    def register(self, definition: StageDefinition) -> None:
        with self._lock:
            bucket = self._definitions[definition.kind]
            if definition.name in bucket:
                logger.warning(
                    "stage_registry.override",
                    stage=definition.name,
                    kind=definition.kind.value,
                )
            bucket[definition.name] = definition
        logger.debug("stage_registry.registered", stage=definition.name, kind=definition.kind.value)

    def get(self, kind: StageKind, name: str) -> Optional[StageDefinition]:
        return self._definitions[kind].get(name)

    def names(self, kind: StageKind) -> List[str]:
        return sorted(self._definitions[kind])

    def build(
        self,
        kind: StageKind,
        name: str,
        arguments: Sequence[Any] = (),
        field: Optional[str] = None,
    ) -> Optional[Callable[..., Any]]:
        """
        Construct the stage function for ``name`` with ``arguments``.

        Returns None for unknown names (the caller logs and drops the rule).

        Raises:
            PipelineConfigurationError: If fewer arguments than the constructor
                requires are supplied. Extra arguments are ignored.
        """
        definition = self.get(kind, name)
        if definition is None:
            return None

        required = definition.required_arguments()
        if len(arguments) < required:
            raise PipelineConfigurationError(
                f"Function expects at least {required} argument(s), got {len(arguments)}",
                field=field,
                function_name=name,
            )

        limit = definition.max_arguments()
        if limit is not None and len(arguments) > limit:
            logger.warning(
                "stage_registry.extra_arguments_ignored",
                stage=name,
                field=field,
                supplied=len(arguments),
                accepted=limit,
            )
            arguments = list(arguments)[:limit]

        return definition.factory(*arguments)


# Process-wide registry instance
registry = StageRegistry()


def stage(kind: StageKind, name: str, description: str = "") -> Callable[[Callable[..., Any]], Callable[..., Any]]:
    """
    Register a stage constructor under ``name``.

    Example:
        @stage(StageKind.FORMATTER, "format_string", "Format value with a fixed pattern")
        def format_string(pattern):
            def _format(value, entity, field, context):
                return pattern.format(value)
            return _format
    """

    def decorator(factory: Callable[..., Callable[..., Any]]) -> Callable[..., Callable[..., Any]]:
        registry.register(
            StageDefinition(
                name=name,
                kind=kind,
                factory=factory,
                description=description or (factory.__doc__ or "").strip().split("\n")[0],
            )
        )
        return factory

    return decorator


def get_stage_registry() -> StageRegistry:
    """Return the process-wide registry with every built-in function loaded."""
    # Importing the function modules registers their stages
    from . import functions  # noqa: F401

    return registry
