"""Pydantic models for semantic model entities and their persisted shapes.

All data crossing the storage boundary is validated against these schemas. Wire
keys are camelCase (``contentHash``, ``semanticDescription``); Python attributes
stay snake_case and both spellings are accepted on input.
"""

from __future__ import annotations

from collections.abc import Iterable, Iterator
from datetime import UTC, datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from pydantic.alias_generators import to_camel

INDEX_FILE_NAME = "index.json"
ENTITY_FILE_SUFFIX = ".json"


class EntityType(str, Enum):
    """Kind of database object an entity describes."""

    TABLE = "table"
    VIEW = "view"
    STORED_PROCEDURE = "storedprocedure"

    @property
    def folder(self) -> str:
        """Plural folder name used in storage paths."""
        return f"{self.value}s"

    @classmethod
    def from_folder(cls, folder: str) -> EntityType:
        """Resolve an entity type from its storage folder name (``tables`` -> TABLE)."""
        normalized = folder.strip().lower()
        for member in cls:
            if member.folder == normalized:
                return member
        raise ValueError(f"Unknown entity folder {folder!r}")


class _WireModel(BaseModel):
    model_config = ConfigDict(
        alias_generator=to_camel, populate_by_name=True, protected_namespaces=()
    )


class EmbeddingMetadata(_WireModel):
    """Metadata describing how and from what content an embedding was produced.

    Attributes:
        content_hash: SHA-256 of the canonical entity text that was embedded
        model_id: Embedding model identifier
        service_id: Embedding service identifier
        dimensions: Vector dimensionality
        generated_at: Generation timestamp (UTC)
        version: Envelope schema version
    """

    content_hash: str | None = None
    model_id: str | None = None
    service_id: str | None = None
    dimensions: int | None = Field(default=None, ge=1)
    generated_at: datetime | None = None
    version: str = "1"


class EmbeddingPayload(_WireModel):
    """Embedding block of an entity envelope. ``vector`` may be omitted."""

    vector: list[float] | None = None
    metadata: EmbeddingMetadata | None = None


class SemanticModelColumn(_WireModel):
    """A column of a table or view."""

    name: str = Field(min_length=1)
    type: str | None = None
    description: str | None = None
    is_primary_key: bool = False
    is_nullable: bool = True


def _check_path_component(value: str, field_name: str) -> str:
    if not value or not value.strip():
        raise ValueError(f"{field_name} must not be blank")
    if "/" in value or "\\" in value or value in {".", ".."}:
        raise ValueError(f"{field_name} must not contain path separators, got {value!r}")
    return value


class SemanticModelEntity(_WireModel):
    """A table, view or stored procedure of the semantic model.

    The three kinds share one record type and are told apart by ``entity_type``;
    kind-specific fields (``definition``, ``parameters``, ``columns``) are simply
    left empty where they do not apply.

    Attributes:
        entity_type: Kind of database object
        schema_name: Database schema (serialized as ``schema``)
        name: Object name
        description: Description extracted from the database
        semantic_description: AI-written description
        semantic_description_last_update: When ``semantic_description`` last changed
        definition: DDL/SQL text for views and stored procedures
        parameters: Parameter list text for stored procedures
        columns: Columns for tables and views
        sample_data: Optional sample rows
        is_ignored: Whether the entity is excluded from enrichment
        ignore_reason: Why the entity is ignored
        embedding: Last persisted embedding block; never part of the ``data`` payload
    """

    entity_type: EntityType
    schema_name: str = Field(alias="schema")
    name: str
    description: str | None = None
    semantic_description: str | None = None
    semantic_description_last_update: datetime | None = None
    definition: str | None = None
    parameters: str | None = None
    columns: list[SemanticModelColumn] = Field(default_factory=list)
    sample_data: list[dict[str, Any]] | None = None
    is_ignored: bool = False
    ignore_reason: str | None = None
    embedding: EmbeddingPayload | None = Field(default=None, exclude=True)

    @field_validator("schema_name")
    @classmethod
    def validate_schema_name(cls, v: str) -> str:
        """Schema names become part of storage paths."""
        return _check_path_component(v, "schema")

    @field_validator("name")
    @classmethod
    def validate_name(cls, v: str) -> str:
        """Entity names become part of storage paths."""
        return _check_path_component(v, "name")

    @property
    def identity_key(self) -> str:
        """``{schema}.{name}``, unique within one entity type of a model."""
        return f"{self.schema_name}.{self.name}"

    @property
    def storage_path(self) -> str:
        """Relative storage path, e.g. ``tables/dbo.Product.json``."""
        return entity_storage_path(self.entity_type, self.schema_name, self.name)

    def set_semantic_description(self, semantic_description: str) -> None:
        """Assign an AI-written description and stamp the update time."""
        self.semantic_description = semantic_description
        self.semantic_description_last_update = datetime.now(UTC)

    def to_data(self) -> dict[str, Any]:
        """Domain fields as JSON-ready camelCase dict (the envelope ``data`` block)."""
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


def entity_storage_path(entity_type: EntityType, schema_name: str, name: str) -> str:
    """Build ``{type-plural}/{schema}.{name}.json``."""
    return f"{entity_type.folder}/{schema_name}.{name}{ENTITY_FILE_SUFFIX}"


def parse_storage_path(path: str) -> tuple[EntityType, str]:
    """Split a storage path into its entity type and identity key.

    Example:
        >>> parse_storage_path("views/sales.vOrders.json")
        (<EntityType.VIEW: 'view'>, 'sales.vOrders')
    """
    parts = [part for part in path.replace("\\", "/").split("/") if part]
    if len(parts) != 2 or not parts[1].endswith(ENTITY_FILE_SUFFIX):
        raise ValueError(f"Storage path must look like '<folder>/<schema>.<name>.json', got {path!r}")
    entity_type = EntityType.from_folder(parts[0])
    return entity_type, parts[1][: -len(ENTITY_FILE_SUFFIX)]


class EntityReference(_WireModel):
    """Lightweight stand-in for an entity whose body has not been loaded.

    Attributes:
        entity_type: Kind of database object
        schema_name: Database schema (serialized as ``schema``)
        name: Object name
        path: Relative storage path of the entity envelope
    """

    entity_type: EntityType
    schema_name: str = Field(alias="schema")
    name: str
    path: str = ""

    @field_validator("schema_name")
    @classmethod
    def validate_schema_name(cls, v: str) -> str:
        return _check_path_component(v, "schema")

    @field_validator("name")
    @classmethod
    def validate_name(cls, v: str) -> str:
        return _check_path_component(v, "name")

    @model_validator(mode="after")
    def check_path(self) -> EntityReference:
        """The path is always derived from type and identity; a differing one is rejected."""
        expected = entity_storage_path(self.entity_type, self.schema_name, self.name)
        if not self.path:
            self.path = expected
        elif self.path != expected:
            raise ValueError(f"Reference path {self.path!r} does not match {expected!r}")
        return self

    def matches(self, entity: SemanticModelEntity) -> bool:
        """True when ``entity`` has this reference's type and identity key."""
        return entity.entity_type is self.entity_type and entity.identity_key == self.identity_key

    @property
    def identity_key(self) -> str:
        return f"{self.schema_name}.{self.name}"

    @classmethod
    def from_entity(cls, entity: SemanticModelEntity) -> EntityReference:
        return cls(
            entity_type=entity.entity_type,
            schema_name=entity.schema_name,
            name=entity.name,
            path=entity.storage_path,
        )

    def to_placeholder(self) -> SemanticModelEntity:
        """Identity-only entity used when the referenced body is missing from storage."""
        return SemanticModelEntity(
            entity_type=self.entity_type, schema_name=self.schema_name, name=self.name
        )


class ModelIndex(_WireModel):
    """Persisted index document: model header plus ordered entity references."""

    version: int = 1
    name: str
    source: str | None = None
    description: str | None = None
    tables: list[EntityReference] = Field(default_factory=list)
    views: list[EntityReference] = Field(default_factory=list)
    stored_procedures: list[EntityReference] = Field(default_factory=list)

    @classmethod
    def build(
        cls,
        name: str,
        source: str | None,
        description: str | None,
        entities: Iterable[SemanticModelEntity],
    ) -> ModelIndex:
        """Build an index from fully materialized entities, preserving their order."""
        index = cls(name=name, source=source, description=description)
        for entity in entities:
            index.references_for(entity.entity_type).append(EntityReference.from_entity(entity))
        return index

    def references_for(self, entity_type: EntityType) -> list[EntityReference]:
        if entity_type is EntityType.TABLE:
            return self.tables
        if entity_type is EntityType.VIEW:
            return self.views
        return self.stored_procedures

    def references(self) -> Iterator[EntityReference]:
        """All references: tables, then views, then stored procedures."""
        yield from self.tables
        yield from self.views
        yield from self.stored_procedures

    def to_document(self) -> dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True)
