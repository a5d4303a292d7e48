"""Azure Cosmos DB persistence.

Two containers, both partitioned by model name:

- models: one index document per model, ``id`` = model name
- entities: one document per entity, ``id`` = ``{modelName}|{type}|{schema}.{name}``

Entity documents carry ``data`` and ``embedding.metadata`` only. Vector floats
are never written here.
"""

from __future__ import annotations

import asyncio
from collections.abc import Callable
from datetime import UTC, datetime
from typing import Any, TypeVar

from azure.cosmos import CosmosClient
from loguru import logger

from semantic_store.config import DocumentDbConfig
from semantic_store.exceptions import CorruptionError, NotFoundError
from semantic_store.mappers import DocumentEntityMapper
from semantic_store.models import ModelIndex, SemanticModelEntity, parse_storage_path
from semantic_store.persistence.base import PersistenceStrategy
from semantic_store.retry import RetryPolicy, retry_async

T = TypeVar("T")


def create_cosmos_containers(config: DocumentDbConfig) -> tuple[Any, Any]:
    """Return ``(models_container, entities_container)`` clients for ``config``."""
    client = CosmosClient(config.endpoint, credential=config.key)
    database = client.get_database_client(config.database_name)
    return (
        database.get_container_client(config.models_container),
        database.get_container_client(config.entities_container),
    )


class DocumentDbPersistenceStrategy(PersistenceStrategy):
    """Stores models as Cosmos DB documents.

    Args:
        models_container: Container client for index documents
        entities_container: Container client for entity documents
        retry_policy: Retry settings for every remote call
        max_concurrency: Upper bound on concurrent document operations
    """

    name = "DocumentDb"

    def __init__(
        self,
        models_container: Any,
        entities_container: Any,
        retry_policy: RetryPolicy | None = None,
        max_concurrency: int = 8,
    ):
        super().__init__(max_concurrency)
        self.models_container = models_container
        self.entities_container = entities_container
        self.retry_policy = retry_policy or RetryPolicy()
        self.mapper = DocumentEntityMapper()

    async def _call(self, operation: str, func: Callable[[], T], **context: Any) -> T:
        async def attempt() -> T:
            return await asyncio.to_thread(func)

        return await retry_async(operation, attempt, self.retry_policy, context=context)

    def _entity_id(self, location: str, path: str) -> str:
        entity_type, key = parse_storage_path(path)
        return self.mapper.document_id(location, entity_type.value, key)

    async def _read_index(self, location: str) -> ModelIndex:
        document = await self._call(
            "ReadIndex",
            lambda: self.models_container.read_item(item=location, partition_key=location),
            model=location,
        )
        if not isinstance(document, dict) or "index" not in document:
            raise CorruptionError("Model document has no 'index' field", {"model": location})
        return self._parse_index(document["index"], location)

    async def _write_index(self, location: str, index: ModelIndex) -> None:
        document = {
            "id": location,
            "modelName": location,
            "index": index.to_document(),
            "updatedAt": datetime.now(UTC).isoformat(),
        }
        await self._call(
            "WriteIndex", lambda: self.models_container.upsert_item(body=document), model=location
        )

    async def _read_envelope(self, location: str, path: str) -> dict[str, Any]:
        document_id = self._entity_id(location, path)
        document = await self._call(
            "ReadEntity",
            lambda: self.entities_container.read_item(item=document_id, partition_key=location),
            model=location,
            id=document_id,
        )
        envelope: dict[str, Any] = {"data": document.get("data")}
        if document.get("embedding") is not None:
            envelope["embedding"] = document["embedding"]
        return envelope

    async def _write_entity(self, location: str, entity: SemanticModelEntity) -> None:
        document = self.mapper.to_document(location, entity)
        await self._call(
            "WriteEntity",
            lambda: self.entities_container.upsert_item(body=document),
            model=location,
            id=document["id"],
        )

    async def _delete_entity_object(self, location: str, path: str) -> None:
        document_id = self._entity_id(location, path)
        try:
            await self._call(
                "DeleteEntity",
                lambda: self.entities_container.delete_item(item=document_id, partition_key=location),
                model=location,
                id=document_id,
            )
        except NotFoundError:
            pass

    async def _list_entity_paths(self, location: str) -> list[str]:
        def query() -> list[str]:
            items = self.entities_container.query_items(
                query="SELECT c.path FROM c WHERE c.modelName = @model",
                parameters=[{"name": "@model", "value": location}],
                partition_key=location,
            )
            return [item["path"] for item in items if item.get("path")]

        return await self._call("ListEntities", query, model=location)

    async def exists(self, location: str) -> bool:
        try:
            await self._call(
                "Exists",
                lambda: self.models_container.read_item(item=location, partition_key=location),
                model=location,
            )
        except NotFoundError:
            return False
        return True

    async def list_models(self, root: str | None = None) -> list[str]:
        """Model names, optionally restricted to those starting with ``root``."""

        def query() -> list[str]:
            items = self.models_container.query_items(
                query="SELECT c.id FROM c", enable_cross_partition_query=True
            )
            return [item["id"] for item in items]

        names = await self._call("ListModels", query)
        if root:
            names = [name for name in names if name.startswith(root)]
        return sorted(names)

    async def delete_model(self, location: str) -> bool:
        if not await self.exists(location):
            return False
        await self._call(
            "DeleteIndex",
            lambda: self.models_container.delete_item(item=location, partition_key=location),
            model=location,
        )
        paths = await self._list_entity_paths(location)
        await self._bounded(paths, lambda path: self._delete_entity_object(location, path))
        logger.info(f"Deleted model {location} and {len(paths)} entity documents")
        return True
