"""Vector generation for semantic model entities.

Turns tables, views and stored procedures into content-addressed vector index
records. Embedding work is skipped whenever an entity's canonical text hashes
to the ``contentHash`` already persisted with it.

Architecture:
    - mapping / keys: Canonical entity text, record keys and content hashes
    - embedding: Model-agnostic embedding client (OpenAI)
    - index: Vector index writers (in-memory, Pinecone)
    - generation: The generation service tying the above to a persistence strategy

Usage:
    >>> from semantic_vectors import VectorGenerationService, VectorGenerationOptions
    >>> service = VectorGenerationService(strategy, embedding_client, index_writer)
    >>> processed = await service.generate(model, "AdventureWorks", VectorGenerationOptions())
"""

__version__ = "0.1.0"

from semantic_vectors.generation import VectorGenerationError, VectorGenerationService
from semantic_vectors.index import InMemoryVectorIndexWriter, PineconeIndexWriter, VectorIndexWriter
from semantic_vectors.records import EntityVectorRecord, VectorGenerationOptions

__all__ = [
    "EntityVectorRecord",
    "InMemoryVectorIndexWriter",
    "PineconeIndexWriter",
    "VectorGenerationError",
    "VectorGenerationOptions",
    "VectorGenerationService",
    "VectorIndexWriter",
]
