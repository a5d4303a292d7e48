"""Repository facade over the persistence strategies.

Adds the cross-cutting behaviour callers want without caring which backend is
active: lazy/eager loading defaults, change-tracked selective saves, an optional
in-memory cache of loaded models, and operation timing.
"""

from __future__ import annotations

import contextlib
import time
from typing import Any

from loguru import logger

from semantic_store.config import RepositoryConfig
from semantic_store.models import ENTITY_FILE_SUFFIX
from semantic_store.performance import PerformanceMonitor
from semantic_store.persistence.base import PersistenceStrategy
from semantic_store.persistence.factory import PersistenceStrategyFactory
from semantic_store.semantic_model import SemanticModel


class SemanticModelRepository:
    """Loads and saves semantic models through a named persistence strategy.

    Args:
        factory: Strategy factory (its default strategy is used when no name is given)
        monitor: Optional performance monitor; every call is tracked when provided
        options: Repository behaviour; defaults to the factory config's ``repository`` section
    """

    def __init__(
        self,
        factory: PersistenceStrategyFactory,
        monitor: PerformanceMonitor | None = None,
        options: RepositoryConfig | None = None,
    ):
        self.factory = factory
        self.monitor = monitor
        self.options = options or factory.config.repository
        self._cache: dict[tuple[str, str], tuple[SemanticModel, float]] = {}

    def _strategy(self, strategy_name: str | None) -> PersistenceStrategy:
        return self.factory.get_strategy(strategy_name)

    def _track(self, operation: str, **metadata: Any) -> contextlib.AbstractContextManager[Any]:
        if self.monitor is None or not self.monitor.config.enabled:
            return contextlib.nullcontext()
        return self.monitor.start_operation(operation, metadata)

    # Cache

    def _cache_key(self, strategy: PersistenceStrategy, location: str) -> tuple[str, str]:
        return (strategy.name.lower(), location)

    def _cache_get(self, key: tuple[str, str]) -> SemanticModel | None:
        if not self.options.enable_caching:
            return None
        entry = self._cache.get(key)
        if entry is None:
            return None
        model, expires_at = entry
        if model.closed or time.monotonic() >= expires_at:
            del self._cache[key]
            return None
        return model

    def _cache_put(self, key: tuple[str, str], model: SemanticModel) -> None:
        if self.options.enable_caching:
            self._cache[key] = (model, time.monotonic() + self.options.cache_expiration_seconds)

    def clear_cache(self) -> None:
        self._cache.clear()

    # Operations

    async def load_model(
        self,
        location: str,
        *,
        lazy: bool | None = None,
        change_tracking: bool | None = None,
        strategy_name: str | None = None,
    ) -> SemanticModel:
        """Load a model; ``None`` flags fall back to the repository options.

        Raises:
            NotFoundError: No model is stored at ``location``
        """
        lazy = self.options.enable_lazy_loading if lazy is None else lazy
        change_tracking = (
            self.options.enable_change_tracking if change_tracking is None else change_tracking
        )
        strategy = self._strategy(strategy_name)
        key = self._cache_key(strategy, location)

        cached = self._cache_get(key)
        if cached is not None:
            logger.debug(f"Returning cached model for {location}")
            return cached

        with self._track("LoadModel", location=location, strategy=strategy.name, lazy=lazy):
            model = await strategy.load_model(location, lazy=lazy)

        if change_tracking:
            model.enable_change_tracking()
        self._cache_put(key, model)
        return model

    async def save_model(
        self,
        model: SemanticModel,
        location: str | None = None,
        *,
        strategy_name: str | None = None,
    ) -> None:
        """Persist every entity and the index, then accept tracked changes."""
        location = location or model.name
        strategy = self._strategy(strategy_name)
        with self._track("SaveModel", location=location, strategy=strategy.name):
            await strategy.save_model(model, location)
        model.accept_all_changes()
        self._cache_put(self._cache_key(strategy, location), model)

    async def save_changes(
        self,
        model: SemanticModel,
        location: str | None = None,
        *,
        strategy_name: str | None = None,
    ) -> int:
        """Persist only dirty entities (falls back to a full save without tracking).

        Returns:
            Number of entities written
        """
        if not model.is_change_tracking_enabled():
            await self.save_model(model, location, strategy_name=strategy_name)
            return model.entity_count()

        location = location or model.name
        strategy = self._strategy(strategy_name)
        dirty = model.dirty_entities()
        removed = [
            f"{entity_type.folder}/{key}{ENTITY_FILE_SUFFIX}"
            for entity_type, key in model.removed_entities()
        ]
        if not dirty and not removed:
            logger.debug(f"No unsaved changes in model {model.name}")
            return 0

        with self._track(
            "SaveChanges", location=location, strategy=strategy.name, entities=len(dirty)
        ):
            await strategy.save_entities(model, dirty, location, removed)
        model.accept_all_changes()
        return len(dirty)

    async def exists(self, location: str, *, strategy_name: str | None = None) -> bool:
        strategy = self._strategy(strategy_name)
        with self._track("Exists", location=location, strategy=strategy.name):
            return await strategy.exists(location)

    async def list_models(
        self, root: str | None = None, *, strategy_name: str | None = None
    ) -> list[str]:
        strategy = self._strategy(strategy_name)
        with self._track("ListModels", root=root, strategy=strategy.name):
            return await strategy.list_models(root)

    async def delete_model(self, location: str, *, strategy_name: str | None = None) -> bool:
        strategy = self._strategy(strategy_name)
        self._cache.pop(self._cache_key(strategy, location), None)
        with self._track("DeleteModel", location=location, strategy=strategy.name):
            return await strategy.delete_model(location)
