"""S3-compatible object storage persistence.

A model location maps to the key prefix ``{prefix}/{location}``; objects below it
mirror the local disk layout (``index.json``, ``tables/...``). boto3 clients are
synchronous, so every call runs in a worker thread and goes through the retry
policy.
"""

from __future__ import annotations

import asyncio
import json
from collections.abc import AsyncIterator, Callable
from typing import Any, TypeVar

import boto3
from botocore.config import Config
from loguru import logger

from semantic_store.exceptions import CorruptionError, NotFoundError
from semantic_store.models import INDEX_FILE_NAME
from semantic_store.persistence.base import FileLayoutStrategy
from semantic_store.retry import RetryPolicy, retry_async

T = TypeVar("T")

INDEX_SUFFIX = f"/{INDEX_FILE_NAME}"


def create_s3_client(endpoint_url: str | None = None, region: str | None = None) -> Any:
    """Build an S3 client; credentials come from the standard AWS provider chain."""
    return boto3.client(
        "s3",
        endpoint_url=endpoint_url,
        region_name=region,
        config=Config(signature_version="s3v4", retries={"max_attempts": 1}),
    )


class ObjectStoragePersistenceStrategy(FileLayoutStrategy):
    """Stores each model as a set of JSON objects in one bucket.

    Args:
        bucket: Bucket name
        client: boto3 S3 client (or compatible object)
        prefix: Key prefix shared by every model
        retry_policy: Retry settings for every remote call
        max_concurrency: Upper bound on concurrent object operations
    """

    name = "ObjectStorage"

    def __init__(
        self,
        bucket: str,
        client: Any,
        prefix: str = "",
        retry_policy: RetryPolicy | None = None,
        max_concurrency: int = 8,
    ):
        super().__init__(max_concurrency)
        if not bucket:
            raise ValueError("bucket must not be empty")
        self.bucket = bucket
        self.client = client
        self.prefix = prefix.strip("/")
        self.retry_policy = retry_policy or RetryPolicy()

    def _location_prefix(self, location: str) -> str:
        location = location.strip("/")
        if not location:
            raise ValueError("Model location must not be blank")
        return f"{self.prefix}/{location}" if self.prefix else location

    def _key(self, location: str, relative_path: str) -> str:
        return f"{self._location_prefix(location)}/{relative_path}"

    async def _call(self, operation: str, func: Callable[[], T], key: str) -> T:
        async def attempt() -> T:
            return await asyncio.to_thread(func)

        return await retry_async(
            operation,
            attempt,
            self.retry_policy,
            context={"bucket": self.bucket, "key": key},
        )

    async def _read_json(self, location: str, relative_path: str) -> Any:
        key = self._key(location, relative_path)

        def download() -> bytes:
            response = self.client.get_object(Bucket=self.bucket, Key=key)
            return response["Body"].read()

        body = await self._call("Download", download, key)
        try:
            return json.loads(body)
        except (json.JSONDecodeError, UnicodeDecodeError) as e:
            raise CorruptionError(f"Invalid JSON: {e}", {"bucket": self.bucket, "key": key}) from e

    async def _write_json(self, location: str, relative_path: str, document: Any) -> None:
        key = self._key(location, relative_path)
        body = json.dumps(document, ensure_ascii=False).encode("utf-8")
        await self._call(
            "Upload",
            lambda: self.client.put_object(
                Bucket=self.bucket, Key=key, Body=body, ContentType="application/json"
            ),
            key,
        )

    async def _delete_object(self, location: str, relative_path: str) -> None:
        key = self._key(location, relative_path)
        try:
            await self._call(
                "Delete", lambda: self.client.delete_object(Bucket=self.bucket, Key=key), key
            )
        except NotFoundError:
            pass

    async def _list_keys(self, prefix: str) -> list[str]:
        keys: list[str] = []
        token: str | None = None
        while True:
            kwargs: dict[str, Any] = {"Bucket": self.bucket, "Prefix": prefix}
            if token:
                kwargs["ContinuationToken"] = token
            try:
                page = await self._call("List", lambda: self.client.list_objects_v2(**kwargs), prefix)
            except NotFoundError:
                return keys
            keys.extend(item["Key"] for item in page.get("Contents", []))
            if not page.get("IsTruncated"):
                return keys
            token = page.get("NextContinuationToken")

    async def _iter_relative_paths(self, location: str) -> AsyncIterator[str]:
        prefix = f"{self._location_prefix(location)}/"
        for key in await self._list_keys(prefix):
            yield key[len(prefix):]

    async def exists(self, location: str) -> bool:
        key = self._key(location, INDEX_FILE_NAME)
        try:
            await self._call(
                "Exists", lambda: self.client.head_object(Bucket=self.bucket, Key=key), key
            )
        except NotFoundError:
            return False
        return True

    async def list_models(self, root: str | None = None) -> list[str]:
        """Locations (relative to the strategy prefix) of every stored index under ``root``."""
        parts = [part for part in (self.prefix, (root or "").strip("/")) if part]
        search_prefix = "/".join(parts) + "/" if parts else ""
        strip = f"{self.prefix}/" if self.prefix else ""

        locations = []
        for key in await self._list_keys(search_prefix):
            if key.endswith(INDEX_SUFFIX):
                locations.append(key[len(strip): -len(INDEX_SUFFIX)])
        return sorted(locations)

    async def delete_model(self, location: str) -> bool:
        prefix = f"{self._location_prefix(location)}/"
        keys = await self._list_keys(prefix)
        if not keys:
            return False
        # Index first so a partially deleted model no longer loads.
        keys.sort(key=lambda key: not key.endswith(INDEX_SUFFIX))
        for key in keys:
            await self._delete_object(location, key[len(prefix):])
        logger.info(f"Deleted {len(keys)} objects of model {location} from bucket {self.bucket}")
        return True
