"""
Compilers turning declarative rule documents into executable stages.

One compiler per rule family. Each consumes the list of rule documents of its
family and preserves input order:

- defaults / resetters -> one merged object, applied by deep merge
- filters              -> raw filter expressions, exposed to callers
- formatters           -> ``Stage`` tuple (registry dispatch)
- completers           -> ``Stage`` tuple (registry dispatch)
- transformers         -> ``Stage`` tuple; no function is registered for this
                          family, so it compiles to an empty tuple
- validators           -> ``CompiledValidation`` (pydantic schema + functions)

Unknown function names are logged and dropped; they never fail compilation.
"""

from __future__ import annotations

import math
import re
from typing import Annotated, Any, Dict, Iterable, List, Optional, Sequence, Tuple, Type, TypeVar

from pydantic import BaseModel, BeforeValidator, ConfigDict, Field, StrictBool, StrictInt, create_model
from pydantic import StringConstraints

from polaris.utils.logging import get_logger
from polaris.utils.paths import WILDCARD, build_nested, merge_with_replacement, split_path
from polaris.utils.templating import parse_json_or_text, render_template

from .coercion import coerce
from .config import FieldRule, FilterRule, KeyValueRule, PipelineDocument, RuleFunction, ValidatorRule
from .registry import StageKind, StageRegistry, get_stage_registry
from .types import CompiledPipeline, CompiledValidation, FunctionValidator, Stage, freeze_mapping

logger = get_logger(__name__)

ModelT = TypeVar("ModelT", bound=BaseModel)

FUNCTION_VALIDATOR_TYPE = "function"


def _validated(model_cls: Type[ModelT], rules: Optional[Iterable[Any]]) -> List[ModelT]:
    return [rule if isinstance(rule, model_cls) else model_cls.model_validate(rule) for rule in rules or []]


def coerce_arguments(function: RuleFunction) -> List[Any]:
    """Coerce every argument of ``function`` to its declared type."""
    return [coerce(argument.value, argument.type) for argument in function.arguments]


# --- Defaults / resetters ---------------------------------------------------


def _compile_key_values(rules: Optional[Iterable[Any]], family: str, entity_type: Optional[str]) -> Dict[str, Any]:
    combined: Dict[str, Any] = {}
    for rule in _validated(KeyValueRule, rules):
        if rule.key is None or rule.value is None:
            continue
        value = parse_json_or_text(render_template(rule.value))
        merge_with_replacement(combined, build_nested(rule.key, value))

    logger.debug("pipeline.compiler.compiled", family=family, entity_type=entity_type, keys=list(combined))
    return combined


def compile_defaults(rules: Optional[Iterable[Any]], entity_type: Optional[str] = None) -> Any:
    """
    Merge every default rule into one object, later rules winning.

    Example:
        >>> dict(compile_defaults([{"key": "a.b", "value": "1"}, {"key": "a.c", "value": "2"}]))
        {'a': {'b': 1, 'c': 2}}
    """
    return freeze_mapping(_compile_key_values(rules, "defaults", entity_type))


def compile_resetters(rules: Optional[Iterable[Any]], entity_type: Optional[str] = None) -> Any:
    """Same as :func:`compile_defaults`; applied unconditionally by callers."""
    return freeze_mapping(_compile_key_values(rules, "resetters", entity_type))


# --- Filters ----------------------------------------------------------------


def compile_filters(rules: Optional[Iterable[Any]], entity_type: Optional[str] = None) -> Tuple[str, ...]:
    filters = [rule.value for rule in _validated(FilterRule, [r for r in rules or [] if r is not None]) if rule.value]
    return tuple(filters)


# --- Registry-dispatched stages -----------------------------------------------


def _compile_field_rules(
    rules: Optional[Iterable[Any]],
    kind: StageKind,
    registry: Optional[StageRegistry],
    entity_type: Optional[str],
) -> Tuple[Stage, ...]:
    registry = registry or get_stage_registry()
    stages: List[Stage] = []
    for rule in _validated(FieldRule, rules):
        func = registry.build(kind, rule.function.name, coerce_arguments(rule.function), field=rule.field)
        if func is None:
            logger.warning(
                "pipeline.compiler.unknown_function",
                kind=kind.value,
                function=rule.function.name,
                field=rule.field,
                entity_type=entity_type,
            )
            continue
        stages.append(Stage(field=rule.field, name=rule.function.name, func=func))
    return tuple(stages)


def compile_formatters(
    rules: Optional[Iterable[Any]],
    entity_type: Optional[str] = None,
    registry: Optional[StageRegistry] = None,
) -> Tuple[Stage, ...]:
    return _compile_field_rules(rules, StageKind.FORMATTER, registry, entity_type)


def compile_completers(
    rules: Optional[Iterable[Any]],
    entity_type: Optional[str] = None,
    registry: Optional[StageRegistry] = None,
) -> Tuple[Stage, ...]:
    return _compile_field_rules(rules, StageKind.COMPLETER, registry, entity_type)


def compile_transformers(
    rules: Optional[Iterable[Any]],
    entity_type: Optional[str] = None,
    registry: Optional[StageRegistry] = None,
) -> Tuple[Stage, ...]:
    # Extension point: no transformer function is registered, every rule is dropped
    return _compile_field_rules(rules, StageKind.TRANSFORMER, registry, entity_type)


# --- Validators ---------------------------------------------------------------


def _empty_to_none(value: Any) -> Any:
    return None if value == "" else value


def _nan_to_invalid(value: Any) -> Any:
    if isinstance(value, float) and math.isnan(value):
        raise ValueError("value is not a number")
    return value


SCHEMA_TYPES: Dict[str, Any] = {
    "string": Annotated[str, StringConstraints(strict=True, min_length=1)],
    "integer": StrictInt,
    "double": Annotated[float, BeforeValidator(_nan_to_invalid), Field(allow_inf_nan=False)],
    "boolean": StrictBool,
    "object": dict,
    "array": list,
}


def _schema_annotation(rule: ValidatorRule, multiple: bool) -> Tuple[Any, Any]:
    annotation = SCHEMA_TYPES.get(rule.type.lower(), SCHEMA_TYPES["string"])
    if multiple:
        annotation = List[annotation]  # type: ignore[valid-type]
    if rule.required:
        return annotation, ...
    return Annotated[Optional[annotation], BeforeValidator(_empty_to_none)], None


def _field_name(position: int, path: str) -> str:
    return f"f{position}_{re.sub(r'[^0-9a-zA-Z_]', '_', path)}"


def build_schema(
    rules: Sequence[ValidatorRule], entity_type: Optional[str] = None
) -> Tuple[Optional[Type[BaseModel]], Dict[str, str]]:
    """
    Build one pydantic model validating every schema-based rule.

    Returns the model (None without rules) and the dotted path of each model
    field keyed by field name. Paths containing a wildcard validate the list
    of every matched value.
    """
    if not rules:
        return None, {}

    definitions: Dict[str, Any] = {}
    paths: Dict[str, str] = {}
    for position, rule in enumerate(rules):
        name = _field_name(position, rule.field)
        definitions[name] = _schema_annotation(rule, WILDCARD in split_path(rule.field))
        paths[name] = rule.field

    model_name = f"{(entity_type or 'Entity').title().replace('_', '')}Schema"
    schema = create_model(model_name, __config__=ConfigDict(extra="ignore"), **definitions)
    return schema, paths


def compile_validators(
    rules: Optional[Iterable[Any]],
    entity_type: Optional[str] = None,
    registry: Optional[StageRegistry] = None,
) -> CompiledValidation:
    """Partition validator rules into a schema and function validators."""
    registry = registry or get_stage_registry()
    schema_rules: List[ValidatorRule] = []
    functions: List[FunctionValidator] = []

    for rule in _validated(ValidatorRule, rules):
        if rule.type.lower() != FUNCTION_VALIDATOR_TYPE:
            schema_rules.append(rule)
            continue

        if rule.function is None:
            logger.warning(
                "pipeline.compiler.validator_without_function",
                field=rule.field,
                entity_type=entity_type,
            )
            continue

        func = registry.build(
            StageKind.VALIDATOR, rule.function.name, coerce_arguments(rule.function), field=rule.field
        )
        if func is None:
            logger.warning(
                "pipeline.compiler.unknown_function",
                kind=StageKind.VALIDATOR.value,
                function=rule.function.name,
                field=rule.field,
                entity_type=entity_type,
            )
            continue
        functions.append(
            FunctionValidator(field=rule.field, name=rule.function.name, func=func, required=rule.required)
        )

    schema, paths = build_schema(schema_rules, entity_type)
    return CompiledValidation(schema=schema, fields=freeze_mapping(paths), functions=tuple(functions))


# --- Whole document -------------------------------------------------------------


def compile_pipeline(
    document: Any,
    entity_type: Optional[str] = None,
    registry: Optional[StageRegistry] = None,
) -> CompiledPipeline:
    """
    Compile one pipeline document, running the compilers in assembly order:
    Validation, Formatting, Completion, Transforming, Filtering, Resetting,
    Defaults.
    """
    if not isinstance(document, PipelineDocument):
        document = PipelineDocument.model_validate(document)
    source = document.source

    validation = compile_validators(source.validators, entity_type, registry)
    formatting = compile_formatters(source.formatters, entity_type, registry)
    completion = compile_completers(source.completers, entity_type, registry)
    transforming = compile_transformers(source.transformers, entity_type, registry)
    filtering = compile_filters(source.filters, entity_type)
    resetting = compile_resetters(source.resetters, entity_type)
    defaults = compile_defaults(source.defaults, entity_type)

    return CompiledPipeline(
        name=document.name,
        validation=validation,
        formatting=formatting,
        completion=completion,
        transforming=transforming,
        filtering=filtering,
        resetting=resetting,
        defaults=defaults,
    )
