"""Named persistence strategy resolution.

Strategies are built on first request and cached for the lifetime of the
factory. Requesting one strategy never constructs another, so a process using
only LocalDisk never touches cloud SDK clients.
"""

from __future__ import annotations

import threading
from collections.abc import Callable, Mapping

from loguru import logger

from semantic_store.config import SemanticStoreConfig
from semantic_store.exceptions import ConfigurationError
from semantic_store.persistence.base import PersistenceStrategy
from semantic_store.persistence.document_db import (
    DocumentDbPersistenceStrategy,
    create_cosmos_containers,
)
from semantic_store.persistence.local_disk import LocalDiskPersistenceStrategy
from semantic_store.persistence.object_storage import (
    ObjectStoragePersistenceStrategy,
    create_s3_client,
)

StrategyBuilder = Callable[[SemanticStoreConfig], PersistenceStrategy]


def build_local_disk(config: SemanticStoreConfig) -> PersistenceStrategy:
    return LocalDiskPersistenceStrategy(
        root_directory=config.local_disk.directory,
        lock_timeout=config.local_disk.lock_timeout_seconds,
        max_concurrency=config.repository.max_concurrent_operations,
    )


def build_object_storage(config: SemanticStoreConfig) -> PersistenceStrategy:
    settings = config.object_storage
    if not settings.bucket:
        raise ConfigurationError(
            "ObjectStorage strategy requires object_storage.bucket",
            {"strategy": "ObjectStorage"},
        )
    return ObjectStoragePersistenceStrategy(
        bucket=settings.bucket,
        client=create_s3_client(settings.endpoint_url, settings.region),
        prefix=settings.prefix,
        retry_policy=config.retry,
        max_concurrency=config.repository.max_concurrent_operations,
    )


def build_document_db(config: SemanticStoreConfig) -> PersistenceStrategy:
    settings = config.document_db
    missing = [name for name in ("endpoint", "key") if not getattr(settings, name)]
    if missing:
        raise ConfigurationError(
            f"DocumentDb strategy requires document_db.{', document_db.'.join(missing)}",
            {"strategy": "DocumentDb"},
        )
    models, entities = create_cosmos_containers(settings)
    return DocumentDbPersistenceStrategy(
        models_container=models,
        entities_container=entities,
        retry_policy=config.retry,
        max_concurrency=config.repository.max_concurrent_operations,
    )


DEFAULT_BUILDERS: dict[str, StrategyBuilder] = {
    "LocalDisk": build_local_disk,
    "ObjectStorage": build_object_storage,
    "DocumentDb": build_document_db,
}


class PersistenceStrategyFactory:
    """Resolves strategy names to cached strategy instances.

    Args:
        config: Store configuration; ``repository.strategy`` names the default
        builders: Name-to-builder mapping (tests inject fakes here)

    Example:
        >>> factory = PersistenceStrategyFactory(SemanticStoreConfig())
        >>> factory.get_strategy("localdisk") is factory.get_strategy("LocalDisk")
        True
    """

    def __init__(
        self,
        config: SemanticStoreConfig | None = None,
        builders: Mapping[str, StrategyBuilder] | None = None,
    ):
        self.config = config or SemanticStoreConfig()
        source = builders if builders is not None else DEFAULT_BUILDERS
        self._builders = {name.lower(): (name, builder) for name, builder in source.items()}
        self._instances: dict[str, PersistenceStrategy] = {}
        self._lock = threading.Lock()

    @property
    def available_strategies(self) -> list[str]:
        return [name for name, _ in self._builders.values()]

    @property
    def default_strategy_name(self) -> str:
        return self.config.repository.strategy

    def get_strategy(self, name: str | None = None) -> PersistenceStrategy:
        """Return the strategy registered under ``name`` (case-insensitive).

        Raises:
            ConfigurationError: Unknown name or missing backend settings
        """
        requested = (name or self.default_strategy_name).strip()
        key = requested.lower()
        if key not in self._builders:
            raise ConfigurationError(
                f"Unknown persistence strategy {requested!r}",
                {"available": ", ".join(self.available_strategies)},
            )

        with self._lock:
            strategy = self._instances.get(key)
            if strategy is None:
                canonical, builder = self._builders[key]
                logger.info(f"Creating {canonical} persistence strategy")
                strategy = builder(self.config)
                self._instances[key] = strategy
            return strategy

    def is_created(self, name: str) -> bool:
        with self._lock:
            return name.lower() in self._instances
