"""Embedding client abstraction for entity vector generation.

Supports the OpenAI API; other providers plug in through the ``EmbeddingClient``
protocol. Calls are batched and retried on timeouts and rate limits.
"""

from __future__ import annotations

import asyncio
from typing import Protocol

import httpx
from loguru import logger
from openai import APIConnectionError, APITimeoutError, AsyncOpenAI, RateLimitError
from pydantic import BaseModel, Field


class EmbeddingConfig(BaseModel):
    """Configuration for embedding generation.

    Attributes:
        model: Model identifier (e.g., "openai/text-embedding-3-small")
        service_id: Identifier of the embedding service recorded in envelope metadata
        dimensions: Expected embedding dimensionality
        batch_size: Number of texts to embed per API call
        max_retries: Maximum attempts for transient failures
        retry_base_delay_seconds: Backoff unit; attempt n waits ``base * 2**n``
        timeout_seconds: API request timeout
        api_key: API key for external services (set via env var)
    """

    model: str = "openai/text-embedding-3-small"
    service_id: str = "Embeddings"
    dimensions: int = Field(default=1536, ge=128, le=4096)
    batch_size: int = Field(default=100, ge=1, le=500)
    max_retries: int = Field(default=3, ge=1, le=10)
    retry_base_delay_seconds: float = Field(default=1.0, ge=0.0)
    timeout_seconds: float = Field(default=30.0, ge=1.0, le=300.0)
    api_key: str | None = None


class EmbeddingClient(Protocol):
    """Protocol for embedding client implementations."""

    model_id: str
    service_id: str

    async def embed(self, text: str) -> list[float]:
        """Generate the embedding for one text. An empty list means no vector was produced."""
        ...

    async def embed_batch(self, texts: list[str]) -> list[list[float]]:
        """Generate embeddings for a batch of texts.

        Args:
            texts: List of input texts (max batch_size)

        Returns:
            List of embedding vectors (same order as inputs)
        """
        ...


class OpenAIEmbedding:
    """OpenAI embedding client with retry logic and batching."""

    def __init__(self, config: EmbeddingConfig):
        self.config = config
        # Retries are handled here so attempts and backoff follow max_retries.
        self.client = AsyncOpenAI(
            api_key=config.api_key, timeout=config.timeout_seconds, max_retries=0
        )
        self.model_id = config.model.removeprefix("openai/")
        self.service_id = config.service_id

    async def embed_batch(self, texts: list[str]) -> list[list[float]]:
        """Generate embeddings for a batch of texts with retry logic.

        Raises:
            ValueError: If batch size exceeds config limit or a vector has the wrong size
            openai.RateLimitError: Rate limited on every attempt
            openai.APITimeoutError: Timed out on every attempt
        """
        if len(texts) > self.config.batch_size:
            raise ValueError(f"Batch size {len(texts)} exceeds limit {self.config.batch_size}")

        if not texts:
            return []

        attempts = self.config.max_retries
        for attempt in range(attempts):
            try:
                response = await self.client.embeddings.create(model=self.model_id, input=texts)
            except (APITimeoutError, APIConnectionError, httpx.TimeoutException) as e:
                logger.warning(
                    f"Timeout or connection error embedding batch "
                    f"(attempt {attempt + 1}/{attempts}): {e}"
                )
                if attempt == attempts - 1:
                    raise
                await asyncio.sleep(self.config.retry_base_delay_seconds * 2**attempt)
                continue
            except RateLimitError as e:
                logger.warning(f"Rate limited (attempt {attempt + 1}/{attempts}): {e}")
                if attempt == attempts - 1:
                    raise
                await asyncio.sleep(self.config.retry_base_delay_seconds * 2 ** (attempt + 1))
                continue

            embeddings = [item.embedding for item in sorted(response.data, key=lambda d: d.index)]
            for i, emb in enumerate(embeddings):
                if len(emb) != self.config.dimensions:
                    raise ValueError(
                        f"Expected {self.config.dimensions} dimensions, got {len(emb)} for text {i}"
                    )

            logger.debug(
                f"Embedded {len(texts)} texts with {self.model_id} (attempt {attempt + 1}/{attempts})"
            )
            return embeddings

        raise RuntimeError("Exhausted all retry attempts")

    async def embed(self, text: str) -> list[float]:
        embeddings = await self.embed_batch([text])
        return embeddings[0]


def create_embedding_client(config: EmbeddingConfig) -> EmbeddingClient:
    """Factory function to create an embedding client from config.

    Raises:
        ValueError: If the model provider is not supported
    """
    if config.model.startswith("openai/") or config.model.startswith("text-embedding-"):
        return OpenAIEmbedding(config)

    raise ValueError(f"Unsupported embedding model: {config.model}")
