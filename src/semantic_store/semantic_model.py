"""The semantic model aggregate and its change tracker."""

from __future__ import annotations

import hashlib
import json
from collections.abc import Iterable
from types import TracebackType

from loguru import logger

from semantic_store.exceptions import DisposedError
from semantic_store.lazy import EntityCollection, EntityLoader
from semantic_store.models import EntityReference, EntityType, SemanticModelEntity


def entity_fingerprint(entity: SemanticModelEntity) -> str:
    """Stable hash of an entity's persisted ``data`` block."""
    payload = json.dumps(entity.to_data(), sort_keys=True, separators=(",", ":")).encode()
    return hashlib.sha256(payload).hexdigest()


class ChangeTracker:
    """Snapshot-based dirty tracking.

    ``accept`` records a fingerprint per loaded entity. An entity is dirty when it
    is new since the snapshot or its fingerprint changed; keys present in the
    snapshot but gone from the model are reported as removed. Stubs that were
    never loaded cannot have changed and are always clean.
    """

    def __init__(self) -> None:
        self._baseline: dict[tuple[EntityType, str], str | None] = {}

    def accept(self, slots: Iterable[SemanticModelEntity | EntityReference]) -> None:
        self._baseline = {
            (slot.entity_type, slot.identity_key): (
                entity_fingerprint(slot) if isinstance(slot, SemanticModelEntity) else None
            )
            for slot in slots
        }

    def is_dirty(self, entity: SemanticModelEntity) -> bool:
        key = (entity.entity_type, entity.identity_key)
        if key not in self._baseline:
            return True
        baseline = self._baseline[key]
        # Still a stub in the snapshot and never loaded since.
        if baseline is None:
            return False
        return baseline != entity_fingerprint(entity)

    def mark_loaded(self, entity: SemanticModelEntity) -> None:
        key = (entity.entity_type, entity.identity_key)
        if key in self._baseline and self._baseline[key] is None:
            self._baseline[key] = entity_fingerprint(entity)

    def removed(self, current: Iterable[tuple[EntityType, str]]) -> list[tuple[EntityType, str]]:
        present = set(current)
        return [key for key in self._baseline if key not in present]


class SemanticModel:
    """A database schema description: header fields plus three ordered collections.

    Args:
        name: Model name, also the default storage location
        source: Where the schema came from (connection or database name)
        description: Free-text model description
    """

    def __init__(self, name: str, source: str | None = None, description: str | None = None):
        if not name or not name.strip():
            raise ValueError("Model name must not be blank")
        self.name = name
        self.source = source
        self.description = description
        self._collections = {
            entity_type: EntityCollection(entity_type) for entity_type in EntityType
        }
        self._lazy_loading = False
        self._tracker: ChangeTracker | None = None
        self._closed = False

    def _check_open(self) -> None:
        if self._closed:
            raise DisposedError("SemanticModel has been closed", {"model": self.name})

    def collection(self, entity_type: EntityType) -> EntityCollection:
        self._check_open()
        return self._collections[entity_type]

    @property
    def tables(self) -> EntityCollection:
        return self.collection(EntityType.TABLE)

    @property
    def views(self) -> EntityCollection:
        return self.collection(EntityType.VIEW)

    @property
    def stored_procedures(self) -> EntityCollection:
        return self.collection(EntityType.STORED_PROCEDURE)

    # Mutation

    def add_entity(self, entity: SemanticModelEntity | EntityReference) -> None:
        """Append an entity (or reference) to the collection of its type.

        Raises:
            ValueError: If the identity key already exists for that type
        """
        self.collection(entity.entity_type).add(entity)

    def add_table(self, entity: SemanticModelEntity) -> None:
        self._add_typed(EntityType.TABLE, entity)

    def add_view(self, entity: SemanticModelEntity) -> None:
        self._add_typed(EntityType.VIEW, entity)

    def add_stored_procedure(self, entity: SemanticModelEntity) -> None:
        self._add_typed(EntityType.STORED_PROCEDURE, entity)

    def _add_typed(self, entity_type: EntityType, entity: SemanticModelEntity) -> None:
        if entity.entity_type is not entity_type:
            raise ValueError(f"Expected a {entity_type.value}, got {entity.entity_type.value}")
        self.add_entity(entity)

    def remove_table(self, schema_name: str, name: str) -> bool:
        return self.collection(EntityType.TABLE).remove(f"{schema_name}.{name}")

    def remove_view(self, schema_name: str, name: str) -> bool:
        return self.collection(EntityType.VIEW).remove(f"{schema_name}.{name}")

    def remove_stored_procedure(self, schema_name: str, name: str) -> bool:
        return self.collection(EntityType.STORED_PROCEDURE).remove(f"{schema_name}.{name}")

    # Lookup

    async def find_table(self, schema_name: str, name: str) -> SemanticModelEntity | None:
        return await self.find_entity(EntityType.TABLE, schema_name, name)

    async def find_view(self, schema_name: str, name: str) -> SemanticModelEntity | None:
        return await self.find_entity(EntityType.VIEW, schema_name, name)

    async def find_stored_procedure(
        self, schema_name: str, name: str
    ) -> SemanticModelEntity | None:
        return await self.find_entity(EntityType.STORED_PROCEDURE, schema_name, name)

    async def find_entity(
        self, entity_type: EntityType, schema_name: str, name: str
    ) -> SemanticModelEntity | None:
        """Return one entity, loading only its own body when the model is lazy."""
        return await self.collection(entity_type).get(f"{schema_name}.{name}")

    async def get_tables(self) -> list[SemanticModelEntity]:
        return await self._get_all(EntityType.TABLE)

    async def get_views(self) -> list[SemanticModelEntity]:
        return await self._get_all(EntityType.VIEW)

    async def get_stored_procedures(self) -> list[SemanticModelEntity]:
        return await self._get_all(EntityType.STORED_PROCEDURE)

    async def _get_all(self, entity_type: EntityType) -> list[SemanticModelEntity]:
        collection = self.collection(entity_type)
        await collection.materialize()
        return collection.entities()

    async def materialize_all(self) -> None:
        """Replace every remaining reference with its loaded entity."""
        for entity_type in EntityType:
            await self._get_all(entity_type)

    def all_entities(self) -> list[SemanticModelEntity]:
        """Tables, then views, then stored procedures. Every slot must be loaded."""
        entities: list[SemanticModelEntity] = []
        for entity_type in EntityType:
            entities.extend(self.collection(entity_type).entities())
        return entities

    def all_references(self) -> list[EntityReference]:
        references: list[EntityReference] = []
        for entity_type in EntityType:
            references.extend(self.collection(entity_type).references())
        return references

    def entity_count(self) -> int:
        return sum(len(self.collection(entity_type)) for entity_type in EntityType)

    # Lazy loading

    def enable_lazy_loading(self, loader: EntityLoader, max_concurrency: int = 8) -> None:
        """Attach the loader used to materialize referenced entities."""
        self._check_open()

        async def load(reference: EntityReference) -> SemanticModelEntity:
            entity = await loader(reference)
            if self._tracker is not None:
                self._tracker.mark_loaded(entity)
            return entity

        for collection in self._collections.values():
            collection.set_loader(load, max_concurrency)
        self._lazy_loading = True

    def is_lazy_loading_enabled(self) -> bool:
        return self._lazy_loading

    # Change tracking

    def enable_change_tracking(self) -> None:
        """Start tracking changes from the current state."""
        self._check_open()
        self._tracker = ChangeTracker()
        self._tracker.accept(self._iter_slots())

    def is_change_tracking_enabled(self) -> bool:
        return self._tracker is not None

    def _iter_slots(self) -> Iterable[SemanticModelEntity | EntityReference]:
        for entity_type in EntityType:
            yield from self._collections[entity_type].slots()

    def dirty_entities(self) -> list[SemanticModelEntity]:
        """Loaded entities added or modified since the last accepted snapshot."""
        self._check_open()
        if self._tracker is None:
            raise RuntimeError("Change tracking is not enabled")
        return [
            slot
            for slot in self._iter_slots()
            if isinstance(slot, SemanticModelEntity) and self._tracker.is_dirty(slot)
        ]

    def removed_entities(self) -> list[tuple[EntityType, str]]:
        self._check_open()
        if self._tracker is None:
            raise RuntimeError("Change tracking is not enabled")
        return self._tracker.removed(
            (slot.entity_type, slot.identity_key) for slot in self._iter_slots()
        )

    def has_unsaved_changes(self) -> bool:
        if self._tracker is None:
            return False
        return bool(self.dirty_entities() or self.removed_entities())

    def accept_all_changes(self) -> None:
        self._check_open()
        if self._tracker is not None:
            self._tracker.accept(self._iter_slots())

    # Disposal

    def close(self) -> None:
        """Release the loader. Persisted data is not touched."""
        if self._closed:
            return
        for collection in self._collections.values():
            collection.set_loader(None)
        self._tracker = None
        self._closed = True
        logger.debug(f"Closed semantic model {self.name}")

    @property
    def closed(self) -> bool:
        return self._closed

    def __enter__(self) -> SemanticModel:
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        self.close()

    async def __aenter__(self) -> SemanticModel:
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        self.close()

    def __repr__(self) -> str:
        counts = ", ".join(
            f"{entity_type.folder}={len(collection)}"
            for entity_type, collection in self._collections.items()
        )
        return f"SemanticModel(name={self.name!r}, {counts})"
