"""Persistence strategy contract and the shared load/save templates.

Every backend stores one index document per model plus one envelope per entity.
The templates here fix the order of operations; concrete strategies only supply
the storage primitives.

Save order:
    1. Materialize every lazy reference (the index must list all N entities)
    2. Build the index from the materialized entities
    3. Write every entity envelope (bounded concurrency)
    4. Write the index last
    5. Delete entity objects no longer listed in the index
"""

from __future__ import annotations

import asyncio
import contextlib
import functools
from abc import ABC, abstractmethod
from collections.abc import AsyncIterator, Awaitable, Callable, Iterable
from typing import Any, TypeVar

from loguru import logger
from pydantic import ValidationError

from semantic_store.exceptions import CorruptionError, NotFoundError
from semantic_store.mappers import (
    LocalBlobEntityMapper,
    entity_from_envelope,
    read_embedding_metadata,
    unwrap_envelope,
)
from semantic_store.models import (
    INDEX_FILE_NAME,
    EmbeddingMetadata,
    EntityReference,
    ModelIndex,
    SemanticModelEntity,
    parse_storage_path,
)
from semantic_store.semantic_model import SemanticModel

T = TypeVar("T")
R = TypeVar("R")


class PersistenceStrategy(ABC):
    """Storage backend for semantic models.

    Args:
        max_concurrency: Upper bound on concurrent per-entity I/O calls
    """

    name: str = ""

    def __init__(self, max_concurrency: int = 8):
        self.max_concurrency = max(1, max_concurrency)

    # Storage primitives

    @abstractmethod
    async def _read_index(self, location: str) -> ModelIndex:
        """Read the index document. Raises NotFoundError when absent."""

    @abstractmethod
    async def _write_index(self, location: str, index: ModelIndex) -> None: ...

    @abstractmethod
    async def _read_envelope(self, location: str, path: str) -> dict[str, Any]:
        """Read the raw persisted envelope for ``path``. Raises NotFoundError when absent."""

    @abstractmethod
    async def _write_entity(self, location: str, entity: SemanticModelEntity) -> None: ...

    @abstractmethod
    async def _delete_entity_object(self, location: str, path: str) -> None:
        """Delete one entity object; a missing object is not an error."""

    @abstractmethod
    async def _list_entity_paths(self, location: str) -> list[str]:
        """Storage paths of every entity object currently stored under ``location``."""

    @abstractmethod
    async def exists(self, location: str) -> bool:
        """True when a model index is stored at ``location``; never raises for missing models."""

    @abstractmethod
    async def list_models(self, root: str | None = None) -> list[str]:
        """Locations of every stored model under ``root``; empty when nothing is there."""

    @abstractmethod
    async def delete_model(self, location: str) -> bool:
        """Remove the index and every entity object. Returns False if nothing was stored."""

    def _write_guard(self, location: str) -> contextlib.AbstractAsyncContextManager[Any]:
        """Exclusive section around saves; backends with file locks override this."""
        return contextlib.nullcontext()

    # Helpers

    async def _bounded(
        self, items: Iterable[T], func: Callable[[T], Awaitable[R]]
    ) -> list[R]:
        """Run ``func`` over ``items`` with at most ``max_concurrency`` in flight.

        On the first failure the remaining calls are cancelled and awaited
        before the error propagates, so nothing is still writing once a save's
        lock is released.
        """
        semaphore = asyncio.Semaphore(self.max_concurrency)

        async def run(item: T) -> R:
            async with semaphore:
                return await func(item)

        try:
            async with asyncio.TaskGroup() as group:
                tasks = [group.create_task(run(item)) for item in items]
        except BaseExceptionGroup as e:
            raise e.exceptions[0]
        return [task.result() for task in tasks]

    @staticmethod
    def _parse_index(raw: Any, location: str) -> ModelIndex:
        try:
            return ModelIndex.model_validate(raw)
        except ValidationError as e:
            raise CorruptionError(
                f"Model index failed validation: {e}", {"location": location, "path": INDEX_FILE_NAME}
            ) from e

    async def _load_reference(self, location: str, reference: EntityReference) -> SemanticModelEntity:
        try:
            raw = await self._read_envelope(location, reference.path)
        except NotFoundError:
            logger.warning(
                f"Entity {reference.path} is listed in the index of {location} but missing; "
                f"keeping an identity-only placeholder"
            )
            return reference.to_placeholder()
        entity = entity_from_envelope(raw, reference.path)
        if not reference.matches(entity):
            raise CorruptionError(
                f"Envelope holds {entity.entity_type.value} {entity.identity_key}, "
                f"expected {reference.entity_type.value} {reference.identity_key}",
                {"location": location, "path": reference.path},
            )
        return entity

    # Model operations

    async def load_model(self, location: str, *, lazy: bool = False) -> SemanticModel:
        """Load a model from ``location``.

        Args:
            location: Model location (directory, key prefix or model name)
            lazy: Return references instead of loading every entity body

        Raises:
            NotFoundError: No index exists at ``location``
            CorruptionError: The index or an entity envelope is malformed
        """
        index = await self._read_index(location)
        model = SemanticModel(index.name, index.source, index.description)
        loader = functools.partial(self._load_reference, location)

        if lazy:
            for reference in index.references():
                model.add_entity(reference)
            model.enable_lazy_loading(loader, self.max_concurrency)
            logger.info(
                f"Loaded model {index.name} from {location} lazily "
                f"({model.entity_count()} references)"
            )
            return model

        for entity in await self._bounded(list(index.references()), loader):
            model.add_entity(entity)
        logger.info(f"Loaded model {index.name} from {location} ({model.entity_count()} entities)")
        return model

    async def save_model(self, model: SemanticModel, location: str | None = None) -> None:
        """Persist the whole model; see the module docstring for the write order."""
        location = location or model.name
        await model.materialize_all()
        entities = model.all_entities()
        index = ModelIndex.build(model.name, model.source, model.description, entities)

        async with self._write_guard(location):
            await self._bounded(entities, functools.partial(self._write_entity, location))
            await self._write_index(location, index)
            listed = {reference.path for reference in index.references()}
            orphans = [path for path in await self._list_entity_paths(location) if path not in listed]
            if orphans:
                await self._bounded(orphans, functools.partial(self._delete_entity_object, location))
                logger.debug(f"Deleted {len(orphans)} orphaned entities from {location}")

        logger.info(f"Saved model {model.name} to {location} ({len(entities)} entities)")

    async def save_entities(
        self,
        model: SemanticModel,
        entities: Iterable[SemanticModelEntity],
        location: str | None = None,
        removed_paths: Iterable[str] = (),
    ) -> None:
        """Persist only ``entities`` and rewrite the index from the model's current references.

        Used for selective saves of change-tracked models; stubs stay untouched.
        """
        location = location or model.name
        entities = list(entities)
        removed_paths = list(removed_paths)
        index = ModelIndex(name=model.name, source=model.source, description=model.description)
        for reference in model.all_references():
            index.references_for(reference.entity_type).append(reference)

        async with self._write_guard(location):
            await self._bounded(entities, functools.partial(self._write_entity, location))
            await self._write_index(location, index)
            if removed_paths:
                await self._bounded(removed_paths, functools.partial(self._delete_entity_object, location))

        logger.info(
            f"Saved {len(entities)} changed entities of {model.name} to {location} "
            f"({len(removed_paths)} removed)"
        )

    # Entity operations

    async def load_entity(self, location: str, path: str) -> dict[str, Any]:
        """Return the unwrapped ``data`` block of one entity.

        Raises:
            NotFoundError: The entity object does not exist
            CorruptionError: The envelope has no ``data`` object
        """
        parse_storage_path(path)
        return unwrap_envelope(await self._read_envelope(location, path), path)

    async def load_entity_model(self, location: str, path: str) -> SemanticModelEntity:
        """Load one entity with its embedding block attached."""
        parse_storage_path(path)
        return entity_from_envelope(await self._read_envelope(location, path), path)

    async def save_entity(self, location: str, entity: SemanticModelEntity) -> None:
        """Write one entity envelope; either fully succeeds or leaves the previous version."""
        await self._write_entity(location, entity)

    async def delete_entity(self, location: str, path: str) -> None:
        parse_storage_path(path)
        await self._delete_entity_object(location, path)

    async def load_embedding_metadata(self, location: str, path: str) -> EmbeddingMetadata | None:
        """Stored embedding metadata for one entity, or None when entity or embedding is absent."""
        parse_storage_path(path)
        try:
            raw = await self._read_envelope(location, path)
        except NotFoundError:
            return None
        return read_embedding_metadata(raw, path)


class FileLayoutStrategy(PersistenceStrategy):
    """Strategies storing JSON documents under ``{location}/index.json`` and
    ``{location}/{folder}/{schema}.{name}.json`` (local disk, object storage)."""

    mapper = LocalBlobEntityMapper()

    @abstractmethod
    async def _read_json(self, location: str, relative_path: str) -> Any:
        """Raises NotFoundError when missing and CorruptionError when not valid JSON."""

    @abstractmethod
    async def _write_json(self, location: str, relative_path: str, document: Any) -> None: ...

    @abstractmethod
    async def _delete_object(self, location: str, relative_path: str) -> None: ...

    @abstractmethod
    def _iter_relative_paths(self, location: str) -> AsyncIterator[str]:
        """Every stored object under ``location`` as a ``/``-separated relative path."""

    async def _read_index(self, location: str) -> ModelIndex:
        return self._parse_index(await self._read_json(location, INDEX_FILE_NAME), location)

    async def _write_index(self, location: str, index: ModelIndex) -> None:
        await self._write_json(location, INDEX_FILE_NAME, index.to_document())

    async def _read_envelope(self, location: str, path: str) -> dict[str, Any]:
        raw = await self._read_json(location, path)
        if not isinstance(raw, dict):
            raise CorruptionError("Entity envelope is not a JSON object", {"location": location, "path": path})
        return raw

    async def _write_entity(self, location: str, entity: SemanticModelEntity) -> None:
        await self._write_json(location, entity.storage_path, self.mapper.to_persisted(entity))

    async def _delete_entity_object(self, location: str, path: str) -> None:
        await self._delete_object(location, path)

    async def _list_entity_paths(self, location: str) -> list[str]:
        paths = []
        async for relative in self._iter_relative_paths(location):
            try:
                parse_storage_path(relative)
            except ValueError:
                continue
            paths.append(relative)
        return paths
