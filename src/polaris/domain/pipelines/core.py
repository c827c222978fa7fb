"""
Pipeline executor: runs a compiled ``PipelineModel`` over one entity.

Every pipeline entry runs its phases in a fixed order:

    Defaults -> Resetting -> Filtering -> Transforming -> Completion
    -> Formatting -> Validation

Within a phase, stages targeting distinct fields run concurrently on a
bounded thread pool; stages sharing a field run sequentially in declaration
order. A phase joins before the next one starts. The entity is mutated in
place and nothing is rolled back when validation fails.
"""

from __future__ import annotations

import time
from concurrent.futures import ThreadPoolExecutor
from typing import Any, Callable, Dict, List, Mapping, Optional, Sequence

from pydantic import ValidationError

from polaris.config.settings import Settings, get_settings
from polaris.utils.logging import get_logger
from polaris.utils.paths import WILDCARD, iter_matches, locate, merge_with_replacement, split_path

from .coercion import UNDEFINED
from .exceptions import EntityValidationError, PipelineError, PipelineStageError
from .types import (
    COMPLETION,
    DEFAULTS,
    EXECUTION_ORDER,
    FILTERING,
    FORMATTING,
    RESETTING,
    TRANSFORMING,
    VALIDATION,
    CompiledPipeline,
    CompiledValidation,
    Entity,
    PipelineModel,
    Stage,
    thaw_mapping,
)

logger = get_logger(__name__)

StageRunner = Callable[[Entity, Stage, str, Mapping[str, Any]], None]


def _is_absent(value: Any) -> bool:
    return value is None or value is UNDEFINED or value == ""


class PipelineExecutor:
    """
    Execute compiled pipelines over entity instances.

    Args:
        index_client: Client handed to completers that perform lookups
        max_workers: Thread pool bound per phase (defaults to ``MAX_WORKERS``)
        settings: Application settings (defaults to ``get_settings()``)
    """

    def __init__(
        self,
        index_client: Any = None,
        max_workers: Optional[int] = None,
        settings: Optional[Settings] = None,
    ):
        self.settings = settings or get_settings()
        self.index_client = index_client
        self.max_workers = max(1, max_workers or self.settings.MAX_WORKERS)

    def execute(
        self,
        entity: Entity,
        model: PipelineModel,
        *,
        context: Optional[Mapping[str, Any]] = None,
        apply_defaults: bool = True,
        apply_resetters: bool = True,
    ) -> Entity:
        """
        Run every pipeline entry of ``model`` over ``entity``.

        Args:
            entity: Document mutated in place
            model: Assembled pipeline model
            context: Extra values handed to formatter and completer stages
            apply_defaults: Apply the Defaults phase (creation paths)
            apply_resetters: Apply the Resetting phase (create and update paths)

        Returns:
            The same ``entity`` object, transformed

        Raises:
            EntityValidationError: On the first validation violation
            PipelineStageError: When a formatter or completer stage fails
        """
        stage_context = self._build_context(context)
        start = time.perf_counter()
        logger.info(
            "pipeline.execution.started",
            entity_type=model.name,
            pipelines=len(model.pipelines),
        )

        for pipeline in model.pipelines:
            self._run_pipeline(entity, pipeline, stage_context, apply_defaults, apply_resetters)

        logger.info(
            "pipeline.execution.completed",
            entity_type=model.name,
            duration_ms=int((time.perf_counter() - start) * 1000),
        )
        return entity

    def filters(self, model: PipelineModel) -> List[str]:
        """Filter expressions of ``model``, for callers building read queries."""
        return model.filters

    def _build_context(self, context: Optional[Mapping[str, Any]]) -> Dict[str, Any]:
        base: Dict[str, Any] = {
            "index_client": self.index_client,
            "index_prefix": self.settings.index_prefix,
            "settings": self.settings,
        }
        base.update(context or {})
        return base

    def _run_pipeline(
        self,
        entity: Entity,
        pipeline: CompiledPipeline,
        context: Mapping[str, Any],
        apply_defaults: bool,
        apply_resetters: bool,
    ) -> None:
        for phase in EXECUTION_ORDER:
            if phase == DEFAULTS and apply_defaults:
                merge_with_replacement(entity, thaw_mapping(pipeline.defaults))
            elif phase == RESETTING and apply_resetters:
                merge_with_replacement(entity, thaw_mapping(pipeline.resetting))
            elif phase == FILTERING:
                # Exposed through ``filters``; never applied to the entity
                continue
            elif phase == TRANSFORMING:
                self._run_phase(entity, pipeline.transforming, phase, self._apply_formatter, context)
            elif phase == COMPLETION:
                self._run_phase(entity, pipeline.completion, phase, self._apply_completer, context)
            elif phase == FORMATTING:
                self._run_phase(entity, pipeline.formatting, phase, self._apply_formatter, context)
            elif phase == VALIDATION:
                self.validate(entity, pipeline.validation)

    # --- Stage scheduling ---------------------------------------------------

    def _run_phase(
        self,
        entity: Entity,
        stages: Sequence[Stage],
        phase: str,
        runner: StageRunner,
        context: Mapping[str, Any],
    ) -> None:
        if not stages:
            return

        groups: Dict[str, List[Stage]] = {}
        for stage in stages:
            groups.setdefault(stage.field, []).append(stage)

        def run_group(group: List[Stage]) -> None:
            for stage in group:
                runner(entity, stage, phase, context)

        if len(groups) == 1 or self.max_workers == 1:
            for group in groups.values():
                run_group(group)
            return

        with ThreadPoolExecutor(max_workers=min(self.max_workers, len(groups))) as pool:
            futures = [pool.submit(run_group, group) for group in groups.values()]
            # Surface the first failure in declaration order
            for future in futures:
                future.result()

    def _call(self, stage: Stage, phase: str, *args: Any) -> Any:
        try:
            return stage(*args)
        except PipelineStageError as exc:
            raise exc.annotate(stage.field, stage.name, phase)
        except PipelineError:
            raise
        except Exception as exc:
            logger.error(
                "pipeline.stage.failed",
                field=stage.field,
                stage=stage.name,
                phase=phase,
                error=str(exc),
            )
            raise PipelineStageError(
                f"Stage raised {type(exc).__name__}: {exc}",
                field=stage.field,
                stage=stage.name,
                phase=phase,
            ) from exc

    @staticmethod
    def _write(parent: Any, key: Any, value: Any) -> None:
        if value is UNDEFINED:
            if isinstance(parent, dict):
                parent.pop(key, None)
            else:
                parent[key] = None
            return
        parent[key] = value

    def _apply_formatter(self, entity: Entity, stage: Stage, phase: str, context: Mapping[str, Any]) -> None:
        for parent, key, value in list(iter_matches(entity, stage.field)):
            self._write(parent, key, self._call(stage, phase, value, entity, stage.field, context))

    def _apply_completer(self, entity: Entity, stage: Stage, phase: str, context: Mapping[str, Any]) -> None:
        segments = split_path(stage.field)
        leaf = segments[-1]

        if leaf == WILDCARD:
            for parent, key, value in list(iter_matches(entity, segments)):
                stage_context = {**context, "container": parent, "field": stage.field}
                self._write(parent, key, self._call(stage, phase, entity, value, stage_context))
            return

        for container in self._containers(entity, segments[:-1]):
            current = container.get(leaf)
            stage_context = {**context, "container": container, "field": stage.field}
            result = self._call(stage, phase, entity, current, stage_context)
            if result is None and leaf not in container:
                continue
            self._write(container, leaf, result)

    @staticmethod
    def _containers(entity: Entity, parent_segments: List[str]) -> List[Dict[str, Any]]:
        if not parent_segments:
            return [entity]

        containers: List[Dict[str, Any]] = []
        for node in list(locate(entity, parent_segments)):
            if isinstance(node, dict):
                containers.append(node)
            elif isinstance(node, list):
                containers.extend(item for item in node if isinstance(item, dict))
        return containers

    # --- Validation ---------------------------------------------------------

    def validate(self, entity: Entity, validation: CompiledValidation) -> None:
        """
        Check ``entity`` against the schema, then the function validators.

        Raises:
            EntityValidationError: Naming the first violated field and rule
        """
        if validation.schema is not None:
            self._validate_schema(entity, validation)

        for validator in validation.functions:
            values = [value for value in locate(entity, validator.field) if not _is_absent(value)]
            if not values:
                if validator.required:
                    raise EntityValidationError(
                        "Field is required", field=validator.field, rule="required"
                    )
                continue

            stage = Stage(field=validator.field, name=validator.name, func=validator.func)
            for value in values:
                if not self._call(stage, VALIDATION, value, entity):
                    raise EntityValidationError(
                        f"Value failed '{validator.name}' validation",
                        field=validator.field,
                        rule=validator.name,
                    )

    @staticmethod
    def _validate_schema(entity: Entity, validation: CompiledValidation) -> None:
        payload: Dict[str, Any] = {}
        for name, path in validation.fields.items():
            matches = [value for value in locate(entity, path) if value is not UNDEFINED]
            if not matches:
                continue
            payload[name] = matches if WILDCARD in split_path(path) else matches[0]

        try:
            validation.schema.model_validate(payload)
        except ValidationError as exc:
            errors = []
            for error in exc.errors(include_url=False):
                name = error["loc"][0] if error["loc"] else None
                errors.append(
                    {
                        "field": validation.fields.get(name, name),
                        "rule": "required" if error["type"] == "missing" else error["type"],
                        "message": error["msg"],
                    }
                )
            first = errors[0]
            raise EntityValidationError(
                first["message"], field=first["field"], rule=first["rule"], errors=errors
            ) from exc


def execute(entity: Entity, model: PipelineModel, **kwargs: Any) -> Entity:
    """Run ``model`` over ``entity`` with a default executor."""
    index_client = kwargs.pop("index_client", None)
    return PipelineExecutor(index_client=index_client).execute(entity, model, **kwargs)
