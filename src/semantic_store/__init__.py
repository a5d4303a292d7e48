"""Persistence layer for semantic models.

A semantic model describes a relational database schema (tables, views, stored
procedures) enriched with AI-written descriptions. This package stores such
models on local disk, in S3-compatible object storage or in Azure Cosmos DB,
behind one strategy interface with lazy loading.

Architecture:
    - models: Pydantic schemas for entities, envelopes and the model index
    - semantic_model: The in-memory aggregate with change tracking
    - lazy: Entity collections holding loaded entities or references
    - persistence: Strategy contract, backends and the strategy factory
    - repository: Facade adding caching, selective saves and timing
    - retry / performance: Transient-error retry and operation metrics

Usage:
    >>> from semantic_store import PersistenceStrategyFactory, SemanticModelRepository
    >>> repository = SemanticModelRepository(PersistenceStrategyFactory())
    >>> model = await repository.load_model("AdventureWorks", lazy=True)
"""

__version__ = "0.1.0"

from semantic_store.exceptions import (
    ConfigurationError,
    CorruptionError,
    DisposedError,
    NotFoundError,
    PermanentStorageError,
    SemanticStoreError,
    TransientStorageError,
)
from semantic_store.log import configure_logging
from semantic_store.models import (
    EmbeddingMetadata,
    EmbeddingPayload,
    EntityReference,
    EntityType,
    ModelIndex,
    SemanticModelColumn,
    SemanticModelEntity,
)
from semantic_store.persistence import PersistenceStrategy, PersistenceStrategyFactory
from semantic_store.repository import SemanticModelRepository
from semantic_store.semantic_model import SemanticModel

__all__ = [
    "ConfigurationError",
    "CorruptionError",
    "DisposedError",
    "EmbeddingMetadata",
    "EmbeddingPayload",
    "EntityReference",
    "EntityType",
    "ModelIndex",
    "NotFoundError",
    "PermanentStorageError",
    "PersistenceStrategy",
    "PersistenceStrategyFactory",
    "SemanticModel",
    "SemanticModelColumn",
    "SemanticModelEntity",
    "SemanticModelRepository",
    "SemanticStoreError",
    "TransientStorageError",
    "configure_logging",
]
