"""Canonical entity text and vector record construction."""

from __future__ import annotations

from semantic_store.models import SemanticModelEntity
from semantic_vectors.records import EntityVectorRecord


def build_entity_text(entity: SemanticModelEntity) -> str:
    """Deterministic text embedded for an entity.

    Only content fields take part; timestamps and embedding metadata do not, so
    the text (and its hash) changes exactly when the described object changes.

    Example:
        >>> build_entity_text(SemanticModelEntity(entity_type="table", schema="dbo", name="Product"))
        'Schema: dbo\\nName: Product\\n'
    """
    lines = [f"Schema: {entity.schema_name}", f"Name: {entity.name}"]
    if entity.description and entity.description.strip():
        lines += ["Description:", entity.description]
    if entity.semantic_description and entity.semantic_description.strip():
        lines += ["Semantic Description:", entity.semantic_description]
    if entity.parameters and entity.parameters.strip():
        lines += ["Parameters:", entity.parameters]
    if entity.definition and entity.definition.strip():
        lines += ["Definition:", entity.definition]
    if entity.columns:
        lines.append("Columns:")
        for column in entity.columns:
            line = f"- {column.name}: {column.type or ''}".rstrip()
            if column.description and column.description.strip():
                line += f" - {column.description}"
            lines.append(line)
    return "\n".join(lines) + "\n"


def to_record(
    entity: SemanticModelEntity,
    record_id: str,
    content: str,
    vector: list[float],
    content_hash: str,
) -> EntityVectorRecord:
    return EntityVectorRecord(
        id=record_id,
        content=content,
        vector=vector,
        schema_name=entity.schema_name,
        entity_type=entity.entity_type.value,
        name=entity.name,
        content_hash=content_hash,
    )
