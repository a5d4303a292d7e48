"""Vector index writers.

Only upsert is needed by generation; querying the index is left to the
consumers of the index itself.
"""

from __future__ import annotations

import asyncio
from abc import ABC, abstractmethod
from typing import Any

from loguru import logger

from semantic_vectors.config import IndexConfig
from semantic_vectors.records import EntityVectorRecord


class VectorIndexWriter(ABC):
    """Abstract base class for vector index writers."""

    @abstractmethod
    async def upsert(self, record: EntityVectorRecord) -> None:
        """Insert or replace one record, keyed by ``record.id``."""
        ...


class InMemoryVectorIndexWriter(VectorIndexWriter):
    """Dictionary-backed index, one collection per instance."""

    def __init__(self, collection_name: str = "semantic-entities"):
        self.collection_name = collection_name
        self.records: dict[str, EntityVectorRecord] = {}
        self.upsert_count = 0
        self._lock = asyncio.Lock()

    async def upsert(self, record: EntityVectorRecord) -> None:
        async with self._lock:
            self.records[record.id] = record
            self.upsert_count += 1

    def get(self, record_id: str) -> EntityVectorRecord | None:
        return self.records.get(record_id)


class PineconeIndexWriter(VectorIndexWriter):
    """Pinecone vector index writer."""

    def __init__(
        self,
        index_name: str,
        api_key: str | None = None,
        namespace: str | None = None,
        index: Any = None,
    ):
        """Initialize Pinecone index client.

        Args:
            index_name: Name of Pinecone index
            api_key: Pinecone API key (unused when ``index`` is given)
            namespace: Optional namespace for multi-tenancy
            index: Pre-built index handle (tests pass a fake)
        """
        self.index_name = index_name
        self.namespace = namespace
        if index is None:
            from pinecone import Pinecone

            index = Pinecone(api_key=api_key).Index(index_name)
        self.index = index

    async def upsert(self, record: EntityVectorRecord) -> None:
        vector = {"id": record.id, "values": record.vector, "metadata": record.index_metadata()}
        await asyncio.to_thread(self.index.upsert, vectors=[vector], namespace=self.namespace)
        logger.debug(f"Upserted {record.id} into Pinecone index {self.index_name}")


def create_index_writer(config: IndexConfig) -> VectorIndexWriter:
    """Build the index writer named by ``config.backend``."""
    if config.backend == "pinecone":
        if not config.api_key:
            raise ValueError("Pinecone index requires index.api_key")
        return PineconeIndexWriter(config.index_name, config.api_key, config.namespace)
    return InMemoryVectorIndexWriter(config.index_name)
