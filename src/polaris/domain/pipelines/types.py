"""
Core data types for the declarative entity pipeline.

A ``PipelineModel`` is the compiled, immutable artifact for one entity type.
It is built once by the assembler, cached, and shared read-only by every
entity operation, so everything reachable from it is a tuple, a frozen
dataclass or a read-only mapping proxy.
"""

from __future__ import annotations

import copy
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import TYPE_CHECKING, Any, Callable, Dict, List, Mapping, Optional, Tuple

if TYPE_CHECKING:
    from pydantic import BaseModel

    from .mapping import EntityMapping

# Entities flowing through the pipeline are plain JSON-like dicts
Entity = Dict[str, Any]

# Formatter: (current_value, entity, field, context) -> new value
FormatterFunc = Callable[[Any, Entity, str, Mapping[str, Any]], Any]
# Completer: (entity, current_value, context) -> new value
CompleterFunc = Callable[[Entity, Any, Mapping[str, Any]], Any]
# Function validator: (value, entity) -> True when valid
ValidatorFunc = Callable[[Any, Entity], bool]

# Phase identifiers, in assembly order
VALIDATION = "Validation"
FORMATTING = "Formatting"
COMPLETION = "Completion"
TRANSFORMING = "Transforming"
FILTERING = "Filtering"
RESETTING = "Resetting"
DEFAULTS = "Defaults"

ASSEMBLY_ORDER: Tuple[str, ...] = (
    VALIDATION,
    FORMATTING,
    COMPLETION,
    TRANSFORMING,
    FILTERING,
    RESETTING,
    DEFAULTS,
)

EXECUTION_ORDER: Tuple[str, ...] = (
    DEFAULTS,
    RESETTING,
    FILTERING,
    TRANSFORMING,
    COMPLETION,
    FORMATTING,
    VALIDATION,
)


def freeze_mapping(data: Mapping[str, Any]) -> Mapping[str, Any]:
    """Return a read-only view over a private deep copy of ``data``."""
    return MappingProxyType(copy.deepcopy(dict(data)))


def thaw_mapping(data: Mapping[str, Any]) -> Dict[str, Any]:
    """Return a mutable deep copy of a (possibly frozen) mapping."""
    return copy.deepcopy(dict(data))


@dataclass(frozen=True)
class Stage:
    """
    A single compiled field-to-function binding.

    Attributes:
        field: Dotted target path (may contain wildcards)
        name: Name of the rule function the stage was built from
        func: Executable stage function
    """

    field: str
    name: str
    func: Callable[..., Any]

    def __call__(self, *args: Any) -> Any:
        return self.func(*args)


@dataclass(frozen=True)
class FunctionValidator:
    """A compiled function-based validation rule."""

    field: str
    name: str
    func: ValidatorFunc
    required: bool = False


@dataclass(frozen=True)
class CompiledValidation:
    """
    Validation phase of one pipeline entry.

    Attributes:
        schema: Pydantic model built from schema rules (None when there are none)
        fields: Dotted path for each schema field, keyed by model field name
        functions: Function-based validators in declaration order
    """

    schema: Optional[type["BaseModel"]] = None
    fields: Mapping[str, str] = field(default_factory=lambda: MappingProxyType({}))
    functions: Tuple[FunctionValidator, ...] = ()

    def __bool__(self) -> bool:
        return self.schema is not None or bool(self.functions)


@dataclass(frozen=True)
class CompiledPipeline:
    """Stage groups compiled from one pipeline document."""

    name: Optional[str] = None
    validation: CompiledValidation = field(default_factory=CompiledValidation)
    formatting: Tuple[Stage, ...] = ()
    completion: Tuple[Stage, ...] = ()
    transforming: Tuple[Stage, ...] = ()
    filtering: Tuple[str, ...] = ()
    resetting: Mapping[str, Any] = field(default_factory=lambda: MappingProxyType({}))
    defaults: Mapping[str, Any] = field(default_factory=lambda: MappingProxyType({}))

    def as_phases(self) -> Dict[str, Any]:
        """Return the groups keyed by phase name, in assembly order."""
        groups = {
            VALIDATION: self.validation,
            FORMATTING: self.formatting,
            COMPLETION: self.completion,
            TRANSFORMING: self.transforming,
            FILTERING: self.filtering,
            RESETTING: self.resetting,
            DEFAULTS: self.defaults,
        }
        return {phase: groups[phase] for phase in ASSEMBLY_ORDER}


@dataclass(frozen=True)
class Messages:
    """Notification channel names for one entity type."""

    set: str
    remove: str
    modify: str

    @classmethod
    def for_entity(cls, entity_type: str) -> "Messages":
        return cls(
            set=f"l_message_set_entity_{entity_type}",
            remove=f"l_message_remove_entity_{entity_type}",
            modify=f"l_message_modify_entity_{entity_type}",
        )


@dataclass(frozen=True)
class PipelineModel:
    """
    Compiled pipeline artifact for one entity type.

    Attributes:
        name: Entity type
        raw_mapping: Index mapping as returned by the index client
        mapping: Field-projection helper over ``raw_mapping``
        pipelines: Compiled entries, executed independently in order
        messages: Notification channels for set/remove/modify events
    """

    name: str
    raw_mapping: Mapping[str, Any]
    mapping: "EntityMapping"
    pipelines: Tuple[CompiledPipeline, ...]
    messages: Messages

    @property
    def filters(self) -> List[str]:
        """Every filter expression of every pipeline entry, in order."""
        return [expression for pipeline in self.pipelines for expression in pipeline.filtering]
