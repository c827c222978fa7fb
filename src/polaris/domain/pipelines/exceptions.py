"""
Exception hierarchy for the declarative entity pipeline.

This module defines specialized exceptions that provide clear error context
for pipeline assembly, stage execution and entity validation.
"""

from typing import Any, Dict, List, Optional


def _with_context(message: str, **parts: Optional[Any]) -> str:
    context_parts = [f"{key}='{value}'" for key, value in parts.items() if value is not None]
    if context_parts:
        return f"{message} ({', '.join(context_parts)})"
    return message


class PipelineError(Exception):
    """Base exception for all pipeline-related errors."""

    retryable = False


class PipelineConfigurationError(PipelineError):
    """
    Raised when a rule document cannot be compiled.

    Unknown function names are not errors (they are logged and dropped);
    this is raised for structurally invalid documents, e.g. a known function
    declared without its required arguments.
    """

    def __init__(
        self,
        message: str,
        field: Optional[str] = None,
        function_name: Optional[str] = None,
    ):
        self.field = field
        self.function_name = function_name
        super().__init__(_with_context(message, field=field, function=function_name))


class MappingFetchError(PipelineError):
    """Raised when the index mapping for an entity type cannot be fetched."""

    retryable = True

    def __init__(self, message: str, index: Optional[str] = None, entity_type: Optional[str] = None):
        self.index = index
        self.entity_type = entity_type
        super().__init__(_with_context(message, index=index, entity_type=entity_type))


class PipelineStageError(PipelineError):
    """
    Raised when a formatter or completer stage fails.

    Args:
        message: Error description
        field: Field path the stage targets
        stage: Name of the stage function
        phase: Pipeline phase being executed
    """

    def __init__(
        self,
        message: str,
        field: Optional[str] = None,
        stage: Optional[str] = None,
        phase: Optional[str] = None,
    ):
        self.field = field
        self.stage = stage
        self.phase = phase
        self.base_message = message
        super().__init__(_with_context(message, field=field, stage=stage, phase=phase))

    def annotate(self, field: str, stage: str, phase: str) -> "PipelineStageError":
        """Fill in missing execution context and refresh the message."""
        self.field = self.field or field
        self.stage = self.stage or stage
        self.phase = self.phase or phase
        self.args = (
            _with_context(self.base_message, field=self.field, stage=self.stage, phase=self.phase),
        )
        return self


class IndexLookupError(PipelineStageError):
    """Raised when a completer cannot fetch the related entity it depends on."""

    retryable = True


class EntityValidationError(PipelineError):
    """
    Raised when an entity violates its validation rules.

    Attributes:
        field: First violated field path
        rule: Kind of rule violated (e.g. ``required``, ``string_type``, ``regex``)
        errors: Every violation found by the schema, in report order
    """

    def __init__(
        self,
        message: str,
        field: Optional[str] = None,
        rule: Optional[str] = None,
        errors: Optional[List[Dict[str, Any]]] = None,
    ):
        self.field = field
        self.rule = rule
        self.errors = errors or []
        super().__init__(_with_context(message, field=field, rule=rule))
