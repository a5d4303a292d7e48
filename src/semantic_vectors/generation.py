"""Vector generation for semantic model entities.

For each selected entity:

1. Build the canonical text and its SHA-256 content hash
2. Read the previously persisted ``contentHash`` through the active strategy
3. Skip when the hashes match (unless ``overwrite``)
4. Embed, upsert the record into the vector index, then persist the envelope
   (vector plus metadata) through the strategy

An entity counts as processed once it reaches step 4 (or would, in a dry run).
Entities are independent: one failing entity does not stop the others.
"""

from __future__ import annotations

import asyncio
from datetime import UTC, datetime

from loguru import logger

from semantic_store.exceptions import CorruptionError, SemanticStoreError
from semantic_store.models import (
    EmbeddingMetadata,
    EmbeddingPayload,
    EntityType,
    SemanticModelEntity,
)
from semantic_store.persistence.base import PersistenceStrategy
from semantic_store.semantic_model import SemanticModel
from semantic_vectors.embedding import EmbeddingClient
from semantic_vectors.index import VectorIndexWriter
from semantic_vectors.keys import build_content_hash, build_key
from semantic_vectors.mapping import build_entity_text, to_record
from semantic_vectors.records import EntityFailure, VectorGenerationOptions

ENVELOPE_VERSION = "1"


class VectorGenerationError(SemanticStoreError):
    """One or more entities failed during a generation run.

    Attributes:
        processed: Entities successfully processed before the run ended
        failures: Per-entity failure details
    """

    def __init__(self, processed: int, failures: list[EntityFailure]):
        self.processed = processed
        self.failures = failures
        super().__init__(
            f"Vector generation failed for {len(failures)} entities",
            {
                "processed": processed,
                "failed": ", ".join(f"{f.entity_type.value}:{f.identity_key}" for f in failures),
            },
        )


class VectorGenerationService:
    """Generates and persists entity embeddings, skipping unchanged content.

    Args:
        strategy: Persistence strategy used to read previous hashes and write envelopes
        embedding_client: Embedding provider
        index_writer: Vector index receiving the records
        max_concurrency: Entities processed at once
    """

    def __init__(
        self,
        strategy: PersistenceStrategy,
        embedding_client: EmbeddingClient,
        index_writer: VectorIndexWriter,
        max_concurrency: int = 4,
    ):
        self.strategy = strategy
        self.embedding_client = embedding_client
        self.index_writer = index_writer
        self.max_concurrency = max(1, max_concurrency)
        self.last_failures: list[EntityFailure] = []

    async def _select_entities(
        self, model: SemanticModel, options: VectorGenerationOptions
    ) -> list[SemanticModelEntity]:
        if options.has_object_filter:
            entity_type = options.object_type
            if not options.includes(entity_type):
                return []
            entity = await model.find_entity(entity_type, options.schema_name, options.object_name)
            return [entity] if entity is not None else []

        selected: list[SemanticModelEntity] = []
        if options.includes(EntityType.TABLE):
            selected += await model.get_tables()
        if options.includes(EntityType.VIEW):
            selected += await model.get_views()
        if options.includes(EntityType.STORED_PROCEDURE):
            selected += await model.get_stored_procedures()
        return selected

    async def _stored_hash(self, location: str, entity: SemanticModelEntity) -> str | None:
        try:
            metadata = await self.strategy.load_embedding_metadata(location, entity.storage_path)
        except CorruptionError as e:
            logger.warning(
                f"Stored envelope of {entity.identity_key} is unreadable, regenerating: {e}"
            )
            return None
        return metadata.content_hash if metadata else None

    async def _process(
        self,
        model: SemanticModel,
        location: str,
        entity: SemanticModelEntity,
        options: VectorGenerationOptions,
    ) -> bool:
        """Returns True when the entity counted as processed."""
        content = build_entity_text(entity)
        content_hash = build_content_hash(content)

        if not options.overwrite and await self._stored_hash(location, entity) == content_hash:
            logger.info(f"Skipping unchanged {entity.entity_type.value} {entity.identity_key}")
            return False

        if options.dry_run:
            logger.info(f"[DryRun] Would generate embedding for {entity.identity_key}")
            return True

        vector = await self.embedding_client.embed(content)
        if not vector:
            logger.warning(f"Embedding generation returned an empty vector for {entity.identity_key}")
            return False

        record_id = build_key(model.name, entity.entity_type.value, entity.schema_name, entity.name)
        await self.index_writer.upsert(to_record(entity, record_id, content, vector, content_hash))

        entity.embedding = EmbeddingPayload(
            vector=vector,
            metadata=EmbeddingMetadata(
                content_hash=content_hash,
                model_id=self.embedding_client.model_id,
                service_id=self.embedding_client.service_id,
                dimensions=len(vector),
                generated_at=datetime.now(UTC),
                version=ENVELOPE_VERSION,
            ),
        )
        await self.strategy.save_entity(location, entity)
        logger.debug(f"Generated embedding for {entity.identity_key} ({len(vector)} dimensions)")
        return True

    async def generate(
        self,
        model: SemanticModel,
        location: str | None = None,
        options: VectorGenerationOptions | None = None,
    ) -> int:
        """Generate vectors for the selected entities of ``model``.

        Args:
            model: Model whose entities are embedded (lazy references are loaded as needed)
            location: Storage location of the model; defaults to the model name
            options: Selection and behaviour flags

        Returns:
            Number of entities processed (embedded, or counted in a dry run)

        Raises:
            VectorGenerationError: Some entities failed and ``raise_on_failure`` is set
        """
        options = options or VectorGenerationOptions()
        location = location or model.name
        entities = await self._select_entities(model, options)
        self.last_failures = []

        semaphore = asyncio.Semaphore(self.max_concurrency)

        async def run(entity: SemanticModelEntity) -> bool:
            async with semaphore:
                return await self._process(model, location, entity, options)

        results = await asyncio.gather(*(run(entity) for entity in entities), return_exceptions=True)

        processed = 0
        for entity, result in zip(entities, results, strict=True):
            if isinstance(result, BaseException):
                if not isinstance(result, Exception):
                    raise result
                logger.error(
                    f"Vector generation failed for {entity.entity_type.value} "
                    f"{entity.identity_key}: {result}"
                )
                self.last_failures.append(
                    EntityFailure(
                        entity_type=entity.entity_type,
                        identity_key=entity.identity_key,
                        error=str(result),
                    )
                )
            elif result:
                processed += 1

        logger.info(
            f"Vector generation for {model.name}: {processed} processed, "
            f"{len(entities) - processed - len(self.last_failures)} skipped, "
            f"{len(self.last_failures)} failed"
        )
        if self.last_failures and options.raise_on_failure:
            raise VectorGenerationError(processed, list(self.last_failures))
        return processed
