"""Mapping between entities and their provider-specific persisted shapes.

File and object stores keep the full envelope, vector included. The document
database keeps only the embedding metadata so query-facing documents stay small;
the vector itself lives in file/blob storage and the vector index.
"""

from __future__ import annotations

from datetime import UTC, datetime
from typing import Any

from pydantic import ValidationError

from semantic_store.exceptions import CorruptionError
from semantic_store.models import EmbeddingMetadata, EmbeddingPayload, SemanticModelEntity


class LocalBlobEntityMapper:
    """Envelope mapper for the LocalDisk and ObjectStorage strategies."""

    def to_persisted(self, entity: SemanticModelEntity) -> dict[str, Any]:
        """Return ``{"data": ..., "embedding": {"vector": ..., "metadata": ...}}``."""
        envelope: dict[str, Any] = {"data": entity.to_data()}
        if entity.embedding is not None:
            envelope["embedding"] = entity.embedding.model_dump(
                mode="json", by_alias=True, exclude_none=True
            )
        return envelope


class DocumentEntityMapper:
    """Document mapper for the DocumentDb strategy; never writes vector floats."""

    @staticmethod
    def document_id(model_name: str, entity_type: str, identity_key: str) -> str:
        return f"{model_name}|{entity_type}|{identity_key}"

    def to_document(self, model_name: str, entity: SemanticModelEntity) -> dict[str, Any]:
        document: dict[str, Any] = {
            "id": self.document_id(model_name, entity.entity_type.value, entity.identity_key),
            "modelName": model_name,
            "entityType": entity.entity_type.value,
            "entityName": entity.identity_key,
            "path": entity.storage_path,
            "data": entity.to_data(),
            "updatedAt": datetime.now(UTC).isoformat(),
        }
        if entity.embedding is not None and entity.embedding.metadata is not None:
            document["embedding"] = {
                "metadata": entity.embedding.metadata.model_dump(
                    mode="json", by_alias=True, exclude_none=True
                )
            }
        return document


def unwrap_envelope(raw: Any, path: str) -> dict[str, Any]:
    """Return the ``data`` block of a persisted envelope.

    Raises:
        CorruptionError: If the payload is not an object with a ``data`` object
    """
    if not isinstance(raw, dict) or not isinstance(raw.get("data"), dict):
        raise CorruptionError("Entity envelope is missing its 'data' field", {"path": path})
    return raw["data"]


def read_embedding(raw: dict[str, Any], path: str) -> EmbeddingPayload | None:
    """Parse the optional ``embedding`` block of an envelope."""
    block = raw.get("embedding")
    if block is None:
        return None
    try:
        return EmbeddingPayload.model_validate(block)
    except ValidationError as e:
        raise CorruptionError(f"Entity envelope has an invalid embedding block: {e}", {"path": path}) from e


def read_embedding_metadata(raw: dict[str, Any], path: str) -> EmbeddingMetadata | None:
    payload = read_embedding(raw, path)
    return payload.metadata if payload else None


def entity_from_envelope(raw: Any, path: str) -> SemanticModelEntity:
    """Rebuild an entity (with its embedding block attached) from an envelope."""
    data = unwrap_envelope(raw, path)
    try:
        entity = SemanticModelEntity.model_validate(data)
    except ValidationError as e:
        raise CorruptionError(f"Entity data failed validation: {e}", {"path": path}) from e
    entity.embedding = read_embedding(raw, path)
    return entity
