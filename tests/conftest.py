"""Pytest configuration and shared fixtures.

This file ensures that:
- `src/` is importable
- Tests get in-process fakes for the S3 and Cosmos DB clients, so no cloud
  account is needed
- Sample entities and models are built the same way across test modules
"""

from __future__ import annotations

import io
import json
import sys
from collections import Counter
from pathlib import Path
from typing import Any

import pytest

# Ensure src directory is in path for imports
repo_root = Path(__file__).parent.parent
src_path = repo_root / "src"
if str(src_path) not in sys.path:
    sys.path.insert(0, str(src_path))

from azure.cosmos.exceptions import CosmosResourceNotFoundError  # noqa: E402
from botocore.exceptions import ClientError  # noqa: E402

from semantic_store.models import EntityType, SemanticModelColumn, SemanticModelEntity  # noqa: E402
from semantic_store.retry import RetryPolicy  # noqa: E402
from semantic_store.semantic_model import SemanticModel  # noqa: E402


def s3_error(code: str, status: int, operation: str = "GetObject") -> ClientError:
    return ClientError(
        {"Error": {"Code": code, "Message": code}, "ResponseMetadata": {"HTTPStatusCode": status}},
        operation,
    )


class FakeS3Client:
    """Dictionary-backed stand-in for a boto3 S3 client.

    ``failures`` maps an operation name (``put_object``, ``get_object``, ...) to a
    list of exceptions raised, in order, before the real behaviour resumes.
    """

    def __init__(self, page_size: int = 1000):
        self.objects: dict[str, bytes] = {}
        self.page_size = page_size
        self.calls: Counter[str] = Counter()
        self.failures: dict[str, list[Exception]] = {}

    def _enter(self, operation: str) -> None:
        self.calls[operation] += 1
        pending = self.failures.get(operation)
        if pending:
            raise pending.pop(0)

    def put_object(self, Bucket: str, Key: str, Body: bytes, ContentType: str | None = None) -> dict:
        self._enter("put_object")
        self.objects[Key] = Body
        return {}

    def get_object(self, Bucket: str, Key: str) -> dict:
        self._enter("get_object")
        if Key not in self.objects:
            raise s3_error("NoSuchKey", 404)
        return {"Body": io.BytesIO(self.objects[Key])}

    def head_object(self, Bucket: str, Key: str) -> dict:
        self._enter("head_object")
        if Key not in self.objects:
            raise s3_error("404", 404, "HeadObject")
        return {"ContentLength": len(self.objects[Key])}

    def delete_object(self, Bucket: str, Key: str) -> dict:
        self._enter("delete_object")
        self.objects.pop(Key, None)
        return {}

    def list_objects_v2(
        self, Bucket: str, Prefix: str = "", ContinuationToken: str | None = None
    ) -> dict:
        self._enter("list_objects_v2")
        keys = sorted(key for key in self.objects if key.startswith(Prefix))
        start = int(ContinuationToken) if ContinuationToken else 0
        page = keys[start : start + self.page_size]
        response: dict[str, Any] = {"Contents": [{"Key": key} for key in page]}
        if start + self.page_size < len(keys):
            response["IsTruncated"] = True
            response["NextContinuationToken"] = str(start + self.page_size)
        else:
            response["IsTruncated"] = False
        return response

    def json(self, key: str) -> Any:
        return json.loads(self.objects[key])


class FakeCosmosContainer:
    """Dictionary-backed stand-in for an azure-cosmos ContainerProxy."""

    def __init__(self) -> None:
        self.items: dict[tuple[str, str], dict[str, Any]] = {}
        self.calls: Counter[str] = Counter()
        self.failures: dict[str, list[Exception]] = {}

    def _enter(self, operation: str) -> None:
        self.calls[operation] += 1
        pending = self.failures.get(operation)
        if pending:
            raise pending.pop(0)

    def read_item(self, item: str, partition_key: str) -> dict[str, Any]:
        self._enter("read_item")
        try:
            return json.loads(json.dumps(self.items[(partition_key, item)]))
        except KeyError:
            raise CosmosResourceNotFoundError(status_code=404, message=f"{item} not found") from None

    def upsert_item(self, body: dict[str, Any]) -> dict[str, Any]:
        self._enter("upsert_item")
        stored = json.loads(json.dumps(body))
        self.items[(body["modelName"], body["id"])] = stored
        return stored

    def delete_item(self, item: str, partition_key: str) -> None:
        self._enter("delete_item")
        if (partition_key, item) not in self.items:
            raise CosmosResourceNotFoundError(status_code=404, message=f"{item} not found")
        del self.items[(partition_key, item)]

    def query_items(
        self,
        query: str,
        parameters: list[dict[str, Any]] | None = None,
        partition_key: str | None = None,
        enable_cross_partition_query: bool | None = None,
    ) -> list[dict[str, Any]]:
        self._enter("query_items")
        documents = [
            document
            for (pk, _), document in self.items.items()
            if partition_key is None or pk == partition_key
        ]
        if "c.path" in query:
            return [{"path": document["path"]} for document in documents if "path" in document]
        return [{"id": document["id"]} for document in documents]


class FakeEmbeddingClient:
    """Deterministic embedding client recording every text it embeds."""

    model_id = "fake-embedding"
    service_id = "Embeddings"

    def __init__(self, dimensions: int = 8, fail_on: set[str] | None = None):
        self.dimensions = dimensions
        self.fail_on = fail_on or set()
        self.calls: list[str] = []

    async def embed(self, text: str) -> list[float]:
        self.calls.append(text)
        for marker in self.fail_on:
            if marker in text:
                raise RuntimeError(f"embedding failed for {marker}")
        seed = sum(text.encode("utf-8")) % 97
        return [float((seed + i) % 10) / 10 for i in range(self.dimensions)]

    async def embed_batch(self, texts: list[str]) -> list[list[float]]:
        return [await self.embed(text) for text in texts]


@pytest.fixture
def fast_retry() -> RetryPolicy:
    """Retry policy without real waiting."""
    return RetryPolicy(max_attempts=3, base_delay_seconds=0.0, max_delay_seconds=0.0)


@pytest.fixture
def fake_s3() -> FakeS3Client:
    return FakeS3Client()


@pytest.fixture
def cosmos_containers() -> tuple[FakeCosmosContainer, FakeCosmosContainer]:
    return FakeCosmosContainer(), FakeCosmosContainer()


@pytest.fixture
def fake_embedding() -> FakeEmbeddingClient:
    return FakeEmbeddingClient()


def make_table(schema: str = "dbo", name: str = "Product", description: str | None = None):
    return SemanticModelEntity(
        entity_type=EntityType.TABLE,
        schema_name=schema,
        name=name,
        description=description or f"{name} table",
        columns=[
            SemanticModelColumn(name="Id", type="int", is_primary_key=True, is_nullable=False),
            SemanticModelColumn(name="Name", type="nvarchar(100)", description="Display name"),
        ],
    )


def make_view(schema: str = "sales", name: str = "vOrders"):
    return SemanticModelEntity(
        entity_type=EntityType.VIEW,
        schema_name=schema,
        name=name,
        description="Orders joined with customers",
        definition="SELECT o.Id, c.Name FROM sales.Orders o JOIN sales.Customers c ON c.Id = o.CustomerId",
    )


def make_procedure(schema: str = "dbo", name: str = "uspGetOrders"):
    return SemanticModelEntity(
        entity_type=EntityType.STORED_PROCEDURE,
        schema_name=schema,
        name=name,
        description="Returns orders for a customer",
        parameters="@CustomerId int",
        definition="SELECT * FROM sales.Orders WHERE CustomerId = @CustomerId",
    )


@pytest.fixture
def sample_model() -> SemanticModel:
    """Model with two tables, one view and one stored procedure."""
    model = SemanticModel("AdventureWorks", source="Server=localhost;Database=AdventureWorks")
    model.description = "Sample sales database"
    model.add_table(make_table("dbo", "Product"))
    model.add_table(make_table("sales", "Customer", "Customers placing orders"))
    model.add_view(make_view())
    model.add_stored_procedure(make_procedure())
    return model
