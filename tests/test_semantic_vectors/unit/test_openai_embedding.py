"""Unit tests for the OpenAI embedding client."""

import httpx
import pytest
import respx
from httpx import Response
from openai import APITimeoutError, RateLimitError

from semantic_vectors.embedding import EmbeddingConfig, OpenAIEmbedding, create_embedding_client

EMBEDDINGS_URL = "https://api.openai.com/v1/embeddings"


def embeddings_response(*vectors: list[float]) -> Response:
    return Response(
        200,
        json={
            "object": "list",
            "data": [
                {"object": "embedding", "embedding": vector, "index": i} for i, vector in enumerate(vectors)
            ],
            "model": "text-embedding-3-small",
            "usage": {"prompt_tokens": 5, "total_tokens": 5},
        },
    )


@pytest.fixture
def embedding_config() -> EmbeddingConfig:
    """Embedding configuration without real backoff delays."""
    return EmbeddingConfig(
        model="openai/text-embedding-3-small",
        dimensions=1536,
        batch_size=100,
        max_retries=3,
        retry_base_delay_seconds=0.0,
        timeout_seconds=10.0,
        api_key="sk-test-key",
    )


class TestEmbeddingConfig:
    """Tests for EmbeddingConfig validation."""

    def test_defaults(self):
        """Test default embedding configuration."""
        config = EmbeddingConfig()

        assert config.model == "openai/text-embedding-3-small"
        assert config.service_id == "Embeddings"
        assert config.dimensions == 1536

    def test_invalid_dimensions(self):
        """Test dimension validation."""
        with pytest.raises(ValueError):
            EmbeddingConfig(dimensions=50)

        with pytest.raises(ValueError):
            EmbeddingConfig(dimensions=5000)

    def test_invalid_batch_size(self):
        """Test batch size validation."""
        with pytest.raises(ValueError):
            EmbeddingConfig(batch_size=0)

        with pytest.raises(ValueError):
            EmbeddingConfig(batch_size=1000)


class TestOpenAIEmbedding:
    """Tests for OpenAI embedding client."""

    def test_model_id_drops_provider_prefix(self, embedding_config):
        """Test that model_id is the bare OpenAI model name."""
        client = OpenAIEmbedding(embedding_config)

        assert client.model_id == "text-embedding-3-small"
        assert client.service_id == "Embeddings"

    @pytest.mark.asyncio
    @respx.mock
    async def test_embed_single_success(self, embedding_config):
        """Test successful single text embedding."""
        route = respx.post(EMBEDDINGS_URL).mock(return_value=embeddings_response([0.1] * 1536))

        client = OpenAIEmbedding(embedding_config)
        vector = await client.embed("Schema: dbo\nName: Product\n")

        assert len(vector) == 1536
        assert route.call_count == 1

    @pytest.mark.asyncio
    @respx.mock
    async def test_embed_batch_keeps_input_order(self, embedding_config):
        """Vectors come back ordered by index even if the API reorders them."""
        respx.post(EMBEDDINGS_URL).mock(
            return_value=Response(
                200,
                json={
                    "object": "list",
                    "data": [
                        {"object": "embedding", "embedding": [0.2] * 1536, "index": 1},
                        {"object": "embedding", "embedding": [0.1] * 1536, "index": 0},
                    ],
                    "model": "text-embedding-3-small",
                    "usage": {"prompt_tokens": 10, "total_tokens": 10},
                },
            )
        )

        client = OpenAIEmbedding(embedding_config)
        vectors = await client.embed_batch(["first", "second"])

        assert vectors[0][0] == 0.1
        assert vectors[1][0] == 0.2

    @pytest.mark.asyncio
    async def test_batch_size_exceeded(self, embedding_config):
        """Test error when batch exceeds limit."""
        client = OpenAIEmbedding(embedding_config)

        with pytest.raises(ValueError, match="Batch size .* exceeds limit"):
            await client.embed_batch(["text"] * 101)

    @pytest.mark.asyncio
    async def test_empty_batch_returns_empty(self, embedding_config):
        """Test that an empty batch makes no request."""
        client = OpenAIEmbedding(embedding_config)

        assert await client.embed_batch([]) == []

    @pytest.mark.asyncio
    @respx.mock
    async def test_retry_on_rate_limit(self, embedding_config):
        """Test retry on 429 rate limit."""
        respx.post(EMBEDDINGS_URL).mock(
            side_effect=[
                Response(429, json={"error": {"message": "Rate limit exceeded"}}),
                embeddings_response([0.1] * 1536),
            ]
        )

        client = OpenAIEmbedding(embedding_config)
        vector = await client.embed("Test")

        assert len(vector) == 1536
        assert len(respx.calls) == 2

    @pytest.mark.asyncio
    @respx.mock
    async def test_retry_on_timeout(self, embedding_config):
        """Test retry on connection timeout."""
        respx.post(EMBEDDINGS_URL).mock(
            side_effect=[httpx.ConnectTimeout("timed out"), embeddings_response([0.1] * 1536)]
        )

        client = OpenAIEmbedding(embedding_config)

        assert len(await client.embed("Test")) == 1536
        assert len(respx.calls) == 2

    @pytest.mark.asyncio
    @respx.mock
    async def test_exhausted_rate_limit_retries_raise(self, embedding_config):
        """Test that rate limits beyond max_retries raise."""
        respx.post(EMBEDDINGS_URL).mock(
            return_value=Response(429, json={"error": {"message": "Rate limit exceeded"}})
        )
        embedding_config.max_retries = 2
        client = OpenAIEmbedding(embedding_config)

        with pytest.raises(RateLimitError):
            await client.embed("Test")

        assert len(respx.calls) == 2

    @pytest.mark.asyncio
    @respx.mock
    async def test_exhausted_timeout_retries_raise(self, embedding_config):
        """Test that timeouts beyond max_retries raise."""
        respx.post(EMBEDDINGS_URL).mock(side_effect=httpx.ReadTimeout("timed out"))
        client = OpenAIEmbedding(embedding_config)

        with pytest.raises(APITimeoutError):
            await client.embed("Test")

        assert len(respx.calls) == 3

    @pytest.mark.asyncio
    @respx.mock
    async def test_dimension_mismatch_raises(self, embedding_config):
        """Test error on dimension mismatch."""
        respx.post(EMBEDDINGS_URL).mock(return_value=embeddings_response([0.1] * 768))

        client = OpenAIEmbedding(embedding_config)

        with pytest.raises(ValueError, match="Expected 1536 dimensions"):
            await client.embed("Test")


class TestCreateEmbeddingClient:
    """Tests for factory function."""

    @pytest.mark.parametrize("model", ["openai/text-embedding-3-small", "text-embedding-3-large"])
    def test_create_openai_client(self, model):
        """Test factory creates OpenAI client."""
        client = create_embedding_client(EmbeddingConfig(model=model, api_key="test"))

        assert isinstance(client, OpenAIEmbedding)

    def test_unknown_model_raises(self):
        """Test factory rejects unsupported providers."""
        with pytest.raises(ValueError, match="Unsupported embedding model"):
            create_embedding_client(EmbeddingConfig(model="local/bge-large", dimensions=1024))
