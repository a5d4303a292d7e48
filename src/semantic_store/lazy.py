"""Lazy entity collections.

A collection keeps an ordered list of slots. Each slot holds either a loaded
``SemanticModelEntity`` or an ``EntityReference`` stub. Materializing a slot
loads the body through the injected loader and swaps it in place, so order is
preserved and a slot never goes back to being a stub.
"""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable, Iterable, Iterator

from loguru import logger

from semantic_store.exceptions import CorruptionError, SemanticStoreError
from semantic_store.models import EntityReference, EntityType, SemanticModelEntity

EntityLoader = Callable[[EntityReference], Awaitable[SemanticModelEntity]]

Slot = SemanticModelEntity | EntityReference


class UnmaterializedError(SemanticStoreError):
    """A collection was read as fully loaded while stubs remain."""


class EntityCollection:
    """Ordered entities of one type, some of which may still be references.

    Args:
        entity_type: Type shared by every slot
        loader: Coroutine loading one referenced entity; required only while stubs remain
        max_concurrency: Upper bound on loads running at once during ``materialize``
    """

    def __init__(
        self,
        entity_type: EntityType,
        loader: EntityLoader | None = None,
        max_concurrency: int = 8,
    ):
        self.entity_type = entity_type
        self._slots: list[Slot] = []
        self._positions: dict[str, int] = {}
        self._loader = loader
        self._max_concurrency = max(1, max_concurrency)
        self._in_flight: dict[str, asyncio.Task[SemanticModelEntity]] = {}

    def __len__(self) -> int:
        return len(self._slots)

    def __contains__(self, key: object) -> bool:
        return key in self._positions

    def keys(self) -> list[str]:
        return [slot.identity_key for slot in self._slots]

    def slots(self) -> Iterator[Slot]:
        yield from self._slots

    @property
    def pending_count(self) -> int:
        return sum(1 for slot in self._slots if isinstance(slot, EntityReference))

    @property
    def is_materialized(self) -> bool:
        return self.pending_count == 0

    def set_loader(self, loader: EntityLoader | None, max_concurrency: int | None = None) -> None:
        self._loader = loader
        if max_concurrency is not None:
            self._max_concurrency = max(1, max_concurrency)

    def _check_type(self, entity_type: EntityType) -> None:
        if entity_type is not self.entity_type:
            raise ValueError(
                f"Cannot store a {entity_type.value} in the {self.entity_type.value} collection"
            )

    def add(self, item: Slot) -> None:
        """Append an entity or reference; identity keys are unique per collection."""
        self._check_type(item.entity_type)
        key = item.identity_key
        if key in self._positions:
            raise ValueError(f"Duplicate {self.entity_type.value} {key!r}")
        self._positions[key] = len(self._slots)
        self._slots.append(item)

    def extend(self, items: Iterable[Slot]) -> None:
        for item in items:
            self.add(item)

    def remove(self, key: str) -> bool:
        position = self._positions.pop(key, None)
        if position is None:
            return False
        del self._slots[position]
        self._positions = {slot.identity_key: i for i, slot in enumerate(self._slots)}
        return True

    def get_loaded(self, key: str) -> SemanticModelEntity | None:
        """Return the entity if present and already loaded, without triggering I/O."""
        position = self._positions.get(key)
        if position is None:
            return None
        slot = self._slots[position]
        return slot if isinstance(slot, SemanticModelEntity) else None

    async def get(self, key: str) -> SemanticModelEntity | None:
        """Return one entity, materializing only that slot if needed."""
        if key not in self._positions:
            return None
        await self.materialize([key])
        return self.get_loaded(key)

    async def _load_slot(self, reference: EntityReference) -> SemanticModelEntity:
        if self._loader is None:
            raise UnmaterializedError(
                "No loader attached to materialize lazy entities",
                {"entity": reference.identity_key, "path": reference.path},
            )
        entity = await self._loader(reference)
        if not reference.matches(entity):
            raise CorruptionError(
                f"Loader returned {entity.identity_key} for {reference.identity_key}",
                {"entity_type": self.entity_type.value, "path": reference.path},
            )
        position = self._positions.get(reference.identity_key)
        # The slot may have been removed or replaced while the load was running.
        if position is not None and self._slots[position] is reference:
            self._slots[position] = entity
        return entity

    def _task_for(self, reference: EntityReference, semaphore: asyncio.Semaphore) -> asyncio.Task:
        key = reference.identity_key
        task = self._in_flight.get(key)
        if task is None:

            async def run() -> SemanticModelEntity:
                async with semaphore:
                    try:
                        return await self._load_slot(reference)
                    finally:
                        self._in_flight.pop(key, None)

            task = asyncio.ensure_future(run())
            self._in_flight[key] = task
        return task

    async def materialize(self, keys: Iterable[str] | None = None) -> None:
        """Load the referenced bodies of ``keys`` (default: every stub).

        Loads run concurrently up to ``max_concurrency``; a slot already being
        loaded by another caller is awaited rather than loaded twice.
        """
        wanted = set(keys) if keys is not None else None
        references = [
            slot
            for slot in self._slots
            if isinstance(slot, EntityReference)
            and (wanted is None or slot.identity_key in wanted)
        ]
        if not references:
            return

        logger.debug(f"Materializing {len(references)} {self.entity_type.value} entities")
        semaphore = asyncio.Semaphore(self._max_concurrency)
        tasks = [self._task_for(reference, semaphore) for reference in references]
        await asyncio.gather(*tasks)

    def entities(self) -> list[SemanticModelEntity]:
        """All loaded entities in order.

        Raises:
            UnmaterializedError: If any slot is still a reference
        """
        pending = self.pending_count
        if pending:
            raise UnmaterializedError(
                f"{pending} {self.entity_type.value} entities are not materialized",
                {"entity_type": self.entity_type.value},
            )
        return list(self._slots)  # type: ignore[arg-type]

    def references(self) -> list[EntityReference]:
        """References for every slot, loaded or not."""
        return [
            slot if isinstance(slot, EntityReference) else EntityReference.from_entity(slot)
            for slot in self._slots
        ]
