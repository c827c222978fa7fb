"""
Configuration models for declarative pipeline rule documents.

Rule documents are authored externally (YAML files or the pipeline index) and
arrive as plain JSON-compatible data. These Pydantic models validate their
shape before compilation; the models are never mutated by the compilers.
"""

import json
from typing import Any, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


class FunctionArgument(BaseModel):
    """One typed argument of a rule function, stored as text."""

    model_config = ConfigDict(frozen=True)

    value: Any = Field(default=None, description="Raw argument value")
    type: str = Field(default="string", description="Declared argument type")


class RuleFunction(BaseModel):
    """Function descriptor: registry name plus ordered arguments."""

    model_config = ConfigDict(frozen=True)

    name: str = Field(..., description="Registered stage function name")
    arguments: List[FunctionArgument] = Field(default_factory=list)

    @field_validator("arguments", mode="before")
    @classmethod
    def none_means_no_arguments(cls, v: Any) -> Any:
        return [] if v is None else v


class KeyValueRule(BaseModel):
    """Default or resetter rule: templated ``value`` stored at dotted ``key``."""

    model_config = ConfigDict(frozen=True, extra="ignore")

    key: Optional[str] = None
    value: Optional[str] = None

    @field_validator("value", mode="before")
    @classmethod
    def stringify_value(cls, v: Any) -> Any:
        # YAML-native values become JSON text, re-parsed after rendering
        if v is None or isinstance(v, str):
            return v
        return json.dumps(v, default=str)


class FilterRule(BaseModel):
    """Filter rule: a raw filter expression passed to the caller unchanged."""

    model_config = ConfigDict(frozen=True, extra="ignore")

    value: Optional[str] = None


class FieldRule(BaseModel):
    """Formatter, completer or transformer rule bound to a field path."""

    model_config = ConfigDict(frozen=True, extra="ignore")

    field: str = Field(..., description="Dotted field path, may contain wildcards")
    function: RuleFunction


class ValidatorRule(BaseModel):
    """
    Validation rule.

    ``type == "function"`` selects a function-based validator described by
    ``function``; any other type declares the schema type of ``field``.
    """

    model_config = ConfigDict(frozen=True, extra="ignore")

    field: str
    type: str = Field(default="string")
    required: bool = Field(default=False)
    function: Optional[RuleFunction] = None


class PipelineSource(BaseModel):
    """Every rule list of one pipeline document."""

    model_config = ConfigDict(frozen=True, extra="ignore")

    defaults: List[KeyValueRule] = Field(default_factory=list)
    resetters: List[KeyValueRule] = Field(default_factory=list)
    filters: List[Optional[FilterRule]] = Field(default_factory=list)
    formatters: List[FieldRule] = Field(default_factory=list)
    completers: List[FieldRule] = Field(default_factory=list)
    transformers: List[FieldRule] = Field(default_factory=list)
    validators: List[ValidatorRule] = Field(default_factory=list)

    @field_validator(
        "defaults",
        "resetters",
        "filters",
        "formatters",
        "completers",
        "transformers",
        "validators",
        mode="before",
    )
    @classmethod
    def none_means_empty(cls, v: Any) -> Any:
        return [] if v is None else v


class PipelineDocument(BaseModel):
    """One logical sub-pipeline for an entity type."""

    model_config = ConfigDict(frozen=True, extra="ignore")

    name: Optional[str] = None
    source: PipelineSource = Field(default_factory=PipelineSource)

    @field_validator("source", mode="before")
    @classmethod
    def none_means_empty_source(cls, v: Any) -> Any:
        return {} if v is None else v
