"""Configuration management for the semantic store using Hydra.

All configuration is loaded from YAML files in conf/semantic_store/.
This module provides typed config objects and validation.
"""

from __future__ import annotations

from pathlib import Path

from hydra import compose, initialize_config_dir
from omegaconf import DictConfig, OmegaConf
from pydantic import BaseModel, Field

from semantic_store.retry import RetryPolicy

DEFAULT_STRATEGY = "LocalDisk"


class RepositoryConfig(BaseModel):
    """Repository behaviour.

    Attributes:
        strategy: Default persistence strategy name (LocalDisk, ObjectStorage, DocumentDb)
        enable_lazy_loading: Load entity references instead of bodies
        enable_change_tracking: Track dirty entities for selective saves
        enable_caching: Keep loaded models in memory between loads
        cache_expiration_seconds: Cache entry lifetime
        max_concurrent_operations: Upper bound on concurrent entity I/O per operation
    """

    strategy: str = DEFAULT_STRATEGY
    enable_lazy_loading: bool = False
    enable_change_tracking: bool = False
    enable_caching: bool = False
    cache_expiration_seconds: float = Field(default=300.0, gt=0.0)
    max_concurrent_operations: int = Field(default=8, ge=1, le=256)


class LocalDiskConfig(BaseModel):
    """Filesystem strategy settings.

    Attributes:
        directory: Root directory; a model lives in ``{directory}/{modelName}``
        lock_timeout_seconds: How long a save waits for the per-model file lock
    """

    directory: str = "semantic-model"
    lock_timeout_seconds: float = Field(default=30.0, gt=0.0)


class ObjectStorageConfig(BaseModel):
    """S3-compatible object storage settings.

    Attributes:
        bucket: Bucket name (required when the strategy is used)
        prefix: Key prefix prepended to every model location
        endpoint_url: Custom endpoint for S3-compatible services
        region: Region name
    """

    bucket: str | None = None
    prefix: str = ""
    endpoint_url: str | None = None
    region: str | None = None


class DocumentDbConfig(BaseModel):
    """Cosmos DB settings.

    Attributes:
        endpoint: Account endpoint URL (required when the strategy is used)
        key: Account key; ``None`` means the caller injects a credentialed client
        database_name: Database holding both containers
        models_container: Container for index documents
        entities_container: Container for entity documents
    """

    endpoint: str | None = None
    key: str | None = None
    database_name: str = "semantic-models"
    models_container: str = "models"
    entities_container: str = "entities"


class MonitoringConfig(BaseModel):
    """Performance monitoring toggles and recommendation thresholds.

    Attributes:
        enabled: Whether repository operations are tracked
        min_success_rate: Overall success rate (percent) below which "Reliability" fires
        min_operations_for_reliability: Minimum operation count before success rate is judged
        max_average_duration_seconds: Overall average above which "Performance" fires
        operation_min_success_rate: Per-operation success rate threshold (percent)
        operation_min_count: Minimum per-operation count before success rate is judged
        operation_max_average_duration_seconds: Per-operation average duration threshold
        variance_ratio: Max/average ratio above which "Performance Consistency" fires
        variance_min_count: Minimum per-operation count before variance is judged
        high_volume_operations: Total count above which "Resource Management" fires
    """

    enabled: bool = True
    min_success_rate: float = Field(default=95.0, ge=0.0, le=100.0)
    min_operations_for_reliability: int = Field(default=10, ge=0)
    max_average_duration_seconds: float = Field(default=5.0, gt=0.0)
    operation_min_success_rate: float = Field(default=90.0, ge=0.0, le=100.0)
    operation_min_count: int = Field(default=5, ge=0)
    operation_max_average_duration_seconds: float = Field(default=10.0, gt=0.0)
    variance_ratio: float = Field(default=3.0, gt=1.0)
    variance_min_count: int = Field(default=3, ge=0)
    high_volume_operations: int = Field(default=1000, ge=1)


class SemanticStoreConfig(BaseModel):
    """Top-level configuration for semantic model persistence."""

    repository: RepositoryConfig = Field(default_factory=RepositoryConfig)
    local_disk: LocalDiskConfig = Field(default_factory=LocalDiskConfig)
    object_storage: ObjectStorageConfig = Field(default_factory=ObjectStorageConfig)
    document_db: DocumentDbConfig = Field(default_factory=DocumentDbConfig)
    retry: RetryPolicy = Field(default_factory=RetryPolicy)
    monitoring: MonitoringConfig = Field(default_factory=MonitoringConfig)


def default_config_dir(section: str) -> Path:
    """``conf/<section>`` relative to the repository root."""
    repo_root = Path(__file__).parent.parent.parent
    return repo_root / "conf" / section


def compose_config(
    config_path: str | Path,
    config_name: str,
    overrides: list[str] | None = None,
    job_name: str = "semantic_store",
) -> dict[str, object]:
    """Compose a Hydra config directory into a plain, fully resolved dict."""
    config_path = Path(config_path).resolve()

    if not config_path.exists():
        raise FileNotFoundError(
            f"Config directory not found: {config_path}\n" f"Create it with: mkdir -p {config_path}"
        )

    with initialize_config_dir(config_dir=str(config_path), version_base=None, job_name=job_name):
        cfg: DictConfig = compose(config_name=config_name, overrides=overrides or [])

    return OmegaConf.to_container(cfg, resolve=True)  # type: ignore[return-value]


def load_config(
    config_name: str = "default",
    config_path: str | Path | None = None,
    overrides: list[str] | None = None,
) -> SemanticStoreConfig:
    """Load semantic store configuration from Hydra YAML files.

    Args:
        config_name: Name of config file (without .yaml extension)
        config_path: Path to config directory (defaults to conf/semantic_store/)
        overrides: List of config overrides (e.g., ["repository.strategy=DocumentDb"])

    Returns:
        Validated configuration object

    Example:
        >>> config = load_config("default", overrides=["repository.enable_lazy_loading=true"])
        >>> config.repository.enable_lazy_loading
        True
    """
    if config_path is None:
        config_path = default_config_dir("semantic_store")

    config_dict = compose_config(config_path, config_name, overrides)
    return SemanticStoreConfig(**config_dict)  # type: ignore[arg-type]


def create_default_config() -> dict[str, dict[str, object]]:
    """Create a default configuration dictionary for bootstrapping.

    Returns:
        Dictionary suitable for writing to YAML
    """
    return {
        "repository": {
            "strategy": DEFAULT_STRATEGY,
            "enable_lazy_loading": False,
            "enable_change_tracking": False,
            "enable_caching": False,
            "cache_expiration_seconds": 300.0,
            "max_concurrent_operations": 8,
        },
        "local_disk": {"directory": "semantic-model", "lock_timeout_seconds": 30.0},
        "object_storage": {
            "bucket": "${oc.env:SEMANTIC_STORE_BUCKET,null}",
            "prefix": "semantic-models",
            "endpoint_url": None,
            "region": "${oc.env:AWS_REGION,us-east-1}",
        },
        "document_db": {
            "endpoint": "${oc.env:COSMOS_ENDPOINT,null}",
            "key": "${oc.env:COSMOS_KEY,null}",
            "database_name": "semantic-models",
            "models_container": "models",
            "entities_container": "entities",
        },
        "retry": {"max_attempts": 3, "base_delay_seconds": 0.5, "max_delay_seconds": 5.0},
        "monitoring": {
            "enabled": True,
            "min_success_rate": 95.0,
            "min_operations_for_reliability": 10,
            "max_average_duration_seconds": 5.0,
            "operation_min_success_rate": 90.0,
            "operation_min_count": 5,
            "operation_max_average_duration_seconds": 10.0,
            "variance_ratio": 3.0,
            "variance_min_count": 3,
            "high_volume_operations": 1000,
        },
    }
