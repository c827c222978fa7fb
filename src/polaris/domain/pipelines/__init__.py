"""
Declarative entity pipeline for Polaris.

An index mapping plus a list of rule documents (defaults, resetters, filters,
formatters, completers, transformers, validators) are compiled into a
``PipelineModel`` that is run over entities before they are written to, or
after they are read from, the index.

Example Usage:
    >>> from polaris.domain.pipelines import PipelineModelCache, PipelineExecutor
    >>>
    >>> documents = [
    ...     {
    ...         "name": "user",
    ...         "source": {
    ...             "defaults": [{"key": "roles", "value": '["reader"]'}],
    ...             "formatters": [
    ...                 {
    ...                     "field": "user.age",
    ...                     "function": {
    ...                         "name": "generic_formatter",
    ...                         "arguments": [{"value": "integer"}],
    ...                     },
    ...                 }
    ...             ],
    ...             "validators": [{"field": "email", "required": True}],
    ...         },
    ...     }
    ... ]
    >>> cache = PipelineModelCache(index_client, lambda entity_type: documents)
    >>> model = cache.get_or_assemble("pos_user", "user")
    >>> PipelineExecutor(index_client).execute({"email": "a@b.c", "user": {"age": "10"}}, model)
    {'email': 'a@b.c', 'user': {'age': 10}, 'roles': ['reader']}

Available Components:
    - PipelineAssembler / PipelineModelCache: build and cache models
    - PipelineExecutor / execute: run a model over an entity
    - compile_*: one compiler per rule family
    - stage / StageKind: register additional rule functions
"""

from .builder import PipelineAssembler, PipelineModelCache, assemble
from .coercion import UNDEFINED, coerce
from .compilers import (
    compile_completers,
    compile_defaults,
    compile_filters,
    compile_formatters,
    compile_pipeline,
    compile_resetters,
    compile_transformers,
    compile_validators,
)
from .config import PipelineDocument, PipelineSource
from .core import PipelineExecutor, execute
from .exceptions import (
    EntityValidationError,
    IndexLookupError,
    MappingFetchError,
    PipelineConfigurationError,
    PipelineError,
    PipelineStageError,
)
from .mapping import EntityMapping
from .registry import StageKind, StageRegistry, get_stage_registry, stage
from .types import CompiledPipeline, Messages, PipelineModel, Stage

__all__ = [
    # Assembly / execution
    "PipelineAssembler",
    "PipelineModelCache",
    "assemble",
    "PipelineExecutor",
    "execute",
    # Compilers
    "compile_completers",
    "compile_defaults",
    "compile_filters",
    "compile_formatters",
    "compile_pipeline",
    "compile_resetters",
    "compile_transformers",
    "compile_validators",
    # Values
    "UNDEFINED",
    "coerce",
    # Models
    "CompiledPipeline",
    "EntityMapping",
    "Messages",
    "PipelineDocument",
    "PipelineModel",
    "PipelineSource",
    "Stage",
    # Registry
    "StageKind",
    "StageRegistry",
    "get_stage_registry",
    "stage",
    # Exceptions
    "EntityValidationError",
    "IndexLookupError",
    "MappingFetchError",
    "PipelineConfigurationError",
    "PipelineError",
    "PipelineStageError",
]
