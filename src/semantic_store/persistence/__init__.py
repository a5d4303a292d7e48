"""Persistence strategies for semantic models."""

from semantic_store.persistence.base import FileLayoutStrategy, PersistenceStrategy
from semantic_store.persistence.document_db import DocumentDbPersistenceStrategy
from semantic_store.persistence.factory import PersistenceStrategyFactory
from semantic_store.persistence.local_disk import LocalDiskPersistenceStrategy
from semantic_store.persistence.object_storage import ObjectStoragePersistenceStrategy

__all__ = [
    "DocumentDbPersistenceStrategy",
    "FileLayoutStrategy",
    "LocalDiskPersistenceStrategy",
    "ObjectStoragePersistenceStrategy",
    "PersistenceStrategy",
    "PersistenceStrategyFactory",
]
