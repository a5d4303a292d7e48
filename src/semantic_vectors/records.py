"""Pydantic schemas for vector records and generation options."""

from __future__ import annotations

from pydantic import BaseModel, Field, model_validator

from semantic_store.models import EntityType


class EntityVectorRecord(BaseModel):
    """One entity as stored in a vector index.

    Attributes:
        id: Normalized key ``model:type:schema:name``
        content: Canonical text that was embedded
        vector: Embedding of ``content``
        schema_name: Database schema of the entity
        entity_type: Entity type value (table, view, storedprocedure)
        name: Entity name
        content_hash: SHA-256 of ``content``
    """

    id: str = Field(min_length=1)
    content: str
    vector: list[float] = Field(min_length=1)
    schema_name: str
    entity_type: str
    name: str
    content_hash: str

    def index_metadata(self) -> dict[str, str]:
        """Flat metadata attached to the vector in the index."""
        return {
            "content": self.content,
            "schema": self.schema_name,
            "entity_type": self.entity_type,
            "name": self.name,
            "content_hash": self.content_hash,
        }


class VectorGenerationOptions(BaseModel):
    """Options controlling one generation run.

    Attributes:
        overwrite: Regenerate even when the stored content hash matches
        dry_run: Count entities that would be embedded without calling anything
        skip_tables: Leave tables out of the run
        skip_views: Leave views out of the run
        skip_stored_procedures: Leave stored procedures out of the run
        object_type: With ``schema_name`` and ``object_name``, restrict the run to one entity
        schema_name: Schema of the single entity
        object_name: Name of the single entity
        raise_on_failure: Raise VectorGenerationError after the run if any entity failed
    """

    overwrite: bool = False
    dry_run: bool = False
    skip_tables: bool = False
    skip_views: bool = False
    skip_stored_procedures: bool = False
    object_type: EntityType | None = None
    schema_name: str | None = None
    object_name: str | None = None
    raise_on_failure: bool = False

    @model_validator(mode="after")
    def validate_object_filter(self) -> VectorGenerationOptions:
        """The single-object filter needs all three parts or none."""
        parts = [self.object_type, self.schema_name, self.object_name]
        if any(part is not None for part in parts) and not all(part is not None for part in parts):
            raise ValueError("object_type, schema_name and object_name must be given together")
        return self

    @property
    def has_object_filter(self) -> bool:
        return self.object_type is not None

    def includes(self, entity_type: EntityType) -> bool:
        if entity_type is EntityType.TABLE:
            return not self.skip_tables
        if entity_type is EntityType.VIEW:
            return not self.skip_views
        return not self.skip_stored_procedures


class EntityFailure(BaseModel):
    """An entity whose generation failed, with the error text."""

    entity_type: EntityType
    identity_key: str
    error: str
