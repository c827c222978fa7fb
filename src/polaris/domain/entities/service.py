"""
Entity service: pipeline-driven writes and reads against the index.

Creation runs every phase (defaults included), updates skip the Defaults
phase but re-apply resetters. Successful mutations are announced on the
entity type's notification channels (``set``, ``modify``, ``remove``).
"""

import copy
import json
from typing import Any, Callable, Dict, List, Mapping, Optional

from polaris.config.settings import Settings, get_settings
from polaris.io.connectors.exceptions import IndexNotFoundError
from polaris.utils.logging import get_logger
from polaris.utils.paths import merge_with_replacement

from ..pipelines.builder import PipelineModelCache
from ..pipelines.core import PipelineExecutor
from ..pipelines.types import Entity, PipelineModel

logger = get_logger(__name__)

Publisher = Callable[[str, Mapping[str, Any]], None]


def log_publisher(channel: str, payload: Mapping[str, Any]) -> None:
    """Default publisher: record the notification in the log."""
    logger.info("entity.notification", channel=channel, entity_id=payload.get("_id"))


class EntityService:
    """
    Create, update, remove, read and search entities of any configured type.

    Args:
        index_client: ``IndexClient`` implementation
        models: Cache of assembled pipeline models
        executor: Pipeline executor (built from ``index_client`` by default)
        publisher: Callable receiving ``(channel, payload)`` after each mutation
    """

    def __init__(
        self,
        index_client: Any,
        models: PipelineModelCache,
        executor: Optional[PipelineExecutor] = None,
        publisher: Optional[Publisher] = None,
        settings: Optional[Settings] = None,
    ):
        self.settings = settings or get_settings()
        self.index_client = index_client
        self.models = models
        self.executor = executor or PipelineExecutor(index_client=index_client, settings=self.settings)
        self.publisher = publisher or log_publisher

    def index_name(self, entity_type: str) -> str:
        return self.settings.index_name(entity_type)

    def model(self, entity_type: str) -> PipelineModel:
        return self.models.get_or_assemble(self.index_name(entity_type), entity_type)

    def _persist(
        self,
        entity_type: str,
        model: PipelineModel,
        doc_id: Optional[str],
        entity: Entity,
    ) -> Dict[str, Any]:
        document = model.mapping.project(entity) if len(model.mapping) else entity
        response = self.index_client.write(self.index_name(entity_type), entity_type, doc_id, document)
        return {"_id": response.get("_id", doc_id), "_source": document}

    def create(
        self,
        entity_type: str,
        entity: Entity,
        doc_id: Optional[str] = None,
        context: Optional[Mapping[str, Any]] = None,
    ) -> Dict[str, Any]:
        """
        Run the full pipeline over a copy of ``entity`` and index it.

        Raises:
            EntityValidationError: When the entity violates its rules (nothing
                is written)
        """
        model = self.model(entity_type)
        working = copy.deepcopy(entity)
        self.executor.execute(working, model, context=context, apply_defaults=True, apply_resetters=True)

        result = self._persist(entity_type, model, doc_id, working)
        self.publisher(model.messages.set, result)
        logger.info("entity.created", entity_type=entity_type, entity_id=result["_id"])
        return result

    def update(
        self,
        entity_type: str,
        doc_id: str,
        changes: Entity,
        context: Optional[Mapping[str, Any]] = None,
    ) -> Dict[str, Any]:
        """
        Merge ``changes`` into the stored entity, re-run the pipeline without
        defaults and index the result.

        Raises:
            IndexNotFoundError: When no entity ``doc_id`` exists
        """
        model = self.model(entity_type)
        current = self.read(entity_type, doc_id)
        if current is None:
            raise IndexNotFoundError(
                f"Entity '{doc_id}' does not exist", index=self.index_name(entity_type), status_code=404
            )

        working = merge_with_replacement(copy.deepcopy(current["_source"]), changes)
        self.executor.execute(working, model, context=context, apply_defaults=False, apply_resetters=True)

        result = self._persist(entity_type, model, doc_id, working)
        self.publisher(model.messages.modify, result)
        logger.info("entity.updated", entity_type=entity_type, entity_id=doc_id)
        return result

    def remove(self, entity_type: str, doc_id: str) -> bool:
        """Delete an entity; returns False when it did not exist."""
        model = self.model(entity_type)
        deleted = self.index_client.delete(self.index_name(entity_type), doc_id)
        if deleted:
            self.publisher(model.messages.remove, {"_id": doc_id})
            logger.info("entity.removed", entity_type=entity_type, entity_id=doc_id)
        return deleted

    def read(self, entity_type: str, doc_id: str) -> Optional[Dict[str, Any]]:
        return self.index_client.get(self.index_name(entity_type), doc_id)

    def scoped_where(self, entity_type: str, where: Optional[Mapping[str, Any]] = None) -> Optional[Dict[str, Any]]:
        """Combine ``where`` with every filter declared for ``entity_type``."""
        clauses: List[Any] = [json.loads(expression) for expression in self.model(entity_type).filters]
        if where:
            clauses.append(dict(where))
        if not clauses:
            return None
        if len(clauses) == 1:
            return clauses[0]
        return {"$and": clauses}

    def search(self, entity_type: str, body: Mapping[str, Any]) -> Dict[str, Any]:
        """Search ``entity_type`` with its declared filters applied."""
        request = dict(body)
        where = self.scoped_where(entity_type, body.get("where"))
        if where is None:
            request.pop("where", None)
        else:
            request["where"] = where
        return self.index_client.search(self.index_name(entity_type), request)
