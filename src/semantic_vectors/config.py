"""Configuration for vector generation using Hydra.

All configuration is loaded from YAML files in conf/semantic_vectors/.
"""

from __future__ import annotations

from pathlib import Path

from pydantic import BaseModel, Field

from semantic_store.config import compose_config, default_config_dir
from semantic_vectors.embedding import EmbeddingConfig


class IndexConfig(BaseModel):
    """Vector index configuration.

    Attributes:
        backend: Index backend ("memory" or "pinecone")
        index_name: Name of the index/collection
        namespace: Optional namespace for multi-tenancy
        api_key: API key for hosted service
    """

    backend: str = Field(default="memory", pattern="^(memory|pinecone)$")
    index_name: str = "semantic-entities"
    namespace: str | None = None
    api_key: str | None = None


class GenerationConfig(BaseModel):
    """Generation run settings.

    Attributes:
        max_concurrency: Entities processed at once
        raise_on_failure: Default for VectorGenerationOptions.raise_on_failure
    """

    max_concurrency: int = Field(default=4, ge=1, le=64)
    raise_on_failure: bool = False


class SemanticVectorsConfig(BaseModel):
    """Top-level configuration for vector generation."""

    embedding: EmbeddingConfig = Field(default_factory=EmbeddingConfig)
    index: IndexConfig = Field(default_factory=IndexConfig)
    generation: GenerationConfig = Field(default_factory=GenerationConfig)


def load_config(
    config_name: str = "default",
    config_path: str | Path | None = None,
    overrides: list[str] | None = None,
) -> SemanticVectorsConfig:
    """Load vector generation configuration from Hydra YAML files.

    Args:
        config_name: Name of config file (without .yaml extension)
        config_path: Path to config directory (defaults to conf/semantic_vectors/)
        overrides: List of config overrides (e.g., ["index.backend=pinecone"])
    """
    if config_path is None:
        config_path = default_config_dir("semantic_vectors")

    config_dict = compose_config(config_path, config_name, overrides, job_name="semantic_vectors")
    return SemanticVectorsConfig(**config_dict)  # type: ignore[arg-type]


def create_default_config() -> dict[str, dict[str, object]]:
    """Create a default configuration dictionary for bootstrapping."""
    return {
        "embedding": {
            "model": "openai/text-embedding-3-small",
            "service_id": "Embeddings",
            "dimensions": 1536,
            "batch_size": 100,
            "max_retries": 3,
            "retry_base_delay_seconds": 1.0,
            "timeout_seconds": 30.0,
            "api_key": "${oc.env:OPENAI_API_KEY,null}",
        },
        "index": {
            "backend": "memory",
            "index_name": "semantic-entities",
            "namespace": None,
            "api_key": "${oc.env:PINECONE_API_KEY,null}",
        },
        "generation": {"max_concurrency": 4, "raise_on_failure": False},
    }
