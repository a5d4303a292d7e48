"""Unit tests for persisted entity shapes."""

import pytest

from conftest import make_table
from semantic_store.exceptions import CorruptionError
from semantic_store.mappers import (
    DocumentEntityMapper,
    LocalBlobEntityMapper,
    entity_from_envelope,
    read_embedding_metadata,
    unwrap_envelope,
)
from semantic_store.models import EmbeddingMetadata, EmbeddingPayload


@pytest.fixture
def embedded_entity():
    entity = make_table("dbo", "Product")
    entity.embedding = EmbeddingPayload(
        vector=[0.25, 0.5, 0.75],
        metadata=EmbeddingMetadata(
            content_hash="h1", model_id="text-embedding-3-small", service_id="Embeddings", dimensions=3
        ),
    )
    return entity


class TestShapeDivergence:
    """Object storage keeps vectors, the document database does not."""

    def test_blob_envelope_has_vector_and_hash(self, embedded_entity):
        """File envelopes keep the vector next to the metadata."""
        envelope = LocalBlobEntityMapper().to_persisted(embedded_entity)

        assert envelope["embedding"]["vector"] == [0.25, 0.5, 0.75]
        assert envelope["embedding"]["metadata"]["contentHash"] == "h1"
        assert envelope["data"]["name"] == "Product"

    def test_document_has_hash_but_no_vector(self, embedded_entity):
        """Cosmos documents carry ids and metadata but no vector."""
        document = DocumentEntityMapper().to_document("AdventureWorks", embedded_entity)

        assert document["embedding"]["metadata"]["contentHash"] == "h1"
        assert "vector" not in document["embedding"]
        assert document["id"] == "AdventureWorks|table|dbo.Product"
        assert document["modelName"] == "AdventureWorks"
        assert document["path"] == "tables/dbo.Product.json"

    def test_entity_without_embedding_has_no_block(self):
        """No embedding block is written for unembedded entities."""
        entity = make_table()

        assert "embedding" not in LocalBlobEntityMapper().to_persisted(entity)
        assert "embedding" not in DocumentEntityMapper().to_document("M", entity)


class TestEnvelopeReading:
    """Tests for envelope unwrapping."""

    def test_unwrap_returns_data(self, embedded_entity):
        """unwrap_envelope returns the data block."""
        envelope = LocalBlobEntityMapper().to_persisted(embedded_entity)

        assert unwrap_envelope(envelope, "tables/dbo.Product.json")["schema"] == "dbo"

    @pytest.mark.parametrize("raw", [[], {"embedding": {}}, {"data": "text"}])
    def test_missing_data_is_corruption(self, raw):
        """Anything without a data object is corrupt."""
        with pytest.raises(CorruptionError, match="missing its 'data' field"):
            unwrap_envelope(raw, "tables/dbo.Product.json")

    def test_entity_round_trip_keeps_embedding(self, embedded_entity):
        """The embedding block survives an envelope round trip."""
        envelope = LocalBlobEntityMapper().to_persisted(embedded_entity)

        restored = entity_from_envelope(envelope, embedded_entity.storage_path)

        assert restored.model_dump() == embedded_entity.model_dump()
        assert restored.embedding.vector == [0.25, 0.5, 0.75]

    def test_metadata_without_vector(self):
        """Metadata is readable when the vector is absent."""
        raw = {"data": {}, "embedding": {"metadata": {"contentHash": "h2"}}}

        assert read_embedding_metadata(raw, "tables/a.b.json").content_hash == "h2"

    def test_invalid_embedding_block_is_corruption(self):
        """A malformed embedding block is corrupt."""
        raw = {"data": {}, "embedding": {"vector": "not-a-list"}}

        with pytest.raises(CorruptionError):
            read_embedding_metadata(raw, "tables/a.b.json")
