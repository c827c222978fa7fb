"""
Pipeline assembly and per-entity-type model cache.

The assembler fetches the index mapping for an entity type once, compiles
every supplied rule document and returns an immutable ``PipelineModel``. The
cache keeps one model per entity type until it is explicitly invalidated
(mapping or rule reload).
"""

import time
from threading import RLock
from typing import Any, Callable, Dict, Iterable, Optional, Sequence

from polaris.utils.logging import get_logger

from .compilers import compile_pipeline
from .exceptions import MappingFetchError, PipelineError
from .mapping import EntityMapping
from .registry import StageRegistry, get_stage_registry
from .types import Messages, PipelineModel, freeze_mapping

logger = get_logger(__name__)

DocumentSource = Callable[[str], Sequence[Any]]


class PipelineAssembler:
    """
    Compile rule documents plus an index mapping into a ``PipelineModel``.

    Args:
        registry: Stage registry used to resolve rule function names
            (defaults to the process-wide registry with built-ins loaded)
    """

    def __init__(self, registry: Optional[StageRegistry] = None):
        self.registry = registry or get_stage_registry()

    def fetch_mapping(self, index: str, entity_type: str, client: Any) -> Dict[str, Any]:
        """One round trip to the index client; failures are not retried."""
        try:
            return client.fetch_mapping(index, entity_type)
        except PipelineError:
            raise
        except Exception as exc:
            logger.error(
                "pipeline.assembly.mapping_failed",
                index=index,
                entity_type=entity_type,
                error=str(exc),
            )
            raise MappingFetchError(
                f"Could not fetch mapping: {exc}", index=index, entity_type=entity_type
            ) from exc

    def assemble(
        self,
        index: str,
        entity_type: str,
        client: Any,
        documents: Optional[Iterable[Any]] = None,
    ) -> PipelineModel:
        """
        Build the pipeline model of ``entity_type``.

        Each document produces one entry of ``PipelineModel.pipelines``,
        executed independently in declaration order.

        Raises:
            MappingFetchError: When the mapping cannot be fetched
            PipelineConfigurationError: When a document cannot be compiled
        """
        start = time.perf_counter()
        raw_mapping = self.fetch_mapping(index, entity_type, client) or {}

        pipelines = tuple(
            compile_pipeline(document, entity_type, self.registry) for document in documents or []
        )

        model = PipelineModel(
            name=entity_type,
            raw_mapping=freeze_mapping(raw_mapping),
            mapping=EntityMapping(raw_mapping, entity_type),
            pipelines=pipelines,
            messages=Messages.for_entity(entity_type),
        )

        logger.info(
            "pipeline.assembly.completed",
            index=index,
            entity_type=entity_type,
            pipelines=len(pipelines),
            mapped_fields=len(model.mapping),
            duration_ms=int((time.perf_counter() - start) * 1000),
        )
        return model


def assemble(
    index: str,
    entity_type: str,
    client: Any,
    documents: Optional[Iterable[Any]] = None,
) -> PipelineModel:
    """Assemble with the process-wide stage registry."""
    return PipelineAssembler().assemble(index, entity_type, client, documents)


class PipelineModelCache:
    """
    Explicit per-entity-type cache of assembled models.

    Example:
        >>> cache = PipelineModelCache(client, lambda t: load_pipeline_documents(t))
        >>> model = cache.get_or_assemble("pos_user", "user")
        >>> cache.invalidate("user")
    """

    def __init__(
        self,
        client: Any,
        documents: Optional[DocumentSource] = None,
        assembler: Optional[PipelineAssembler] = None,
    ):
        self.client = client
        self.documents = documents or (lambda entity_type: [])
        self.assembler = assembler or PipelineAssembler()
        self._models: Dict[str, PipelineModel] = {}
        self._lock = RLock()

    def get(self, entity_type: str) -> Optional[PipelineModel]:
        with self._lock:
            return self._models.get(entity_type)

    def get_or_assemble(
        self,
        index: str,
        entity_type: str,
        documents: Optional[Iterable[Any]] = None,
    ) -> PipelineModel:
        """
        Return the cached model of ``entity_type`` or assemble it.

        ``documents`` overrides the configured document source for a miss.
        """
        with self._lock:
            model = self._models.get(entity_type)
            if model is not None:
                return model

            if documents is None:
                documents = self.documents(entity_type)
            model = self.assembler.assemble(index, entity_type, self.client, documents)
            self._models[entity_type] = model
            return model

    def invalidate(self, entity_type: Optional[str] = None) -> None:
        """Drop one entity type, or every model when ``entity_type`` is None."""
        with self._lock:
            if entity_type is None:
                dropped = len(self._models)
                self._models.clear()
            else:
                dropped = 1 if self._models.pop(entity_type, None) is not None else 0
        logger.info("pipeline.cache.invalidated", entity_type=entity_type, dropped=dropped)

    def __contains__(self, entity_type: object) -> bool:
        with self._lock:
            return entity_type in self._models

    def __len__(self) -> int:
        with self._lock:
            return len(self._models)
