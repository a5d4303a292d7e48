"""Local filesystem persistence.

Layout of one model directory::

    {root}/{modelName}/
        index.json
        tables/{schema}.{name}.json
        views/{schema}.{name}.json
        storedprocedures/{schema}.{name}.json

Thread/Process Safety:
    - Every file write goes to a temp file in the target directory, is fsynced,
      then atomically replaces the target
    - A cancelled save waits for the file write already in progress, so each
      file ends up either fully replaced or untouched
    - Saves and deletes of one model are serialized by a per-model FileLock
    - Reads take no lock
"""

from __future__ import annotations

import asyncio
import contextlib
import json
import os
import shutil
import uuid
from collections.abc import AsyncIterator
from pathlib import Path
from typing import Any

import aiofiles
import aiofiles.os
from filelock import FileLock, Timeout
from loguru import logger

from semantic_store.exceptions import CorruptionError, NotFoundError, TransientStorageError
from semantic_store.models import INDEX_FILE_NAME
from semantic_store.persistence.base import FileLayoutStrategy

LOCK_FILE_NAME = ".semantic-model.lock"


def _atomic_write(path: Path, text: str) -> None:
    """Replace ``path`` with ``text`` so readers see either the old or the new file."""
    # Write to temp file first
    temp_path = path.with_name(f".{path.name}.{uuid.uuid4().hex}.tmp")
    try:
        with open(temp_path, "w", encoding="utf-8") as f:
            f.write(text)
            f.flush()
            os.fsync(f.fileno())

        # Atomic rename
        temp_path.replace(path)
    except BaseException:
        temp_path.unlink(missing_ok=True)
        raise


class LocalDiskPersistenceStrategy(FileLayoutStrategy):
    """Stores each model as a directory of JSON files.

    Args:
        root_directory: Directory holding model directories; relative locations resolve against it
        lock_timeout: Seconds a save waits for the per-model lock
        max_concurrency: Upper bound on concurrent file operations
    """

    name = "LocalDisk"

    def __init__(
        self,
        root_directory: str | Path = "semantic-model",
        lock_timeout: float = 30.0,
        max_concurrency: int = 8,
    ):
        super().__init__(max_concurrency)
        self.root_directory = Path(root_directory)
        self.lock_timeout = lock_timeout

    def _model_dir(self, location: str) -> Path:
        if not location or not location.strip():
            raise ValueError("Model location must not be blank")
        path = Path(location)
        if ".." in path.parts:
            raise ValueError(f"Model location must not contain '..', got {location!r}")
        return path if path.is_absolute() else self.root_directory / path

    def _file(self, location: str, relative_path: str) -> Path:
        return self._model_dir(location).joinpath(*relative_path.split("/"))

    @contextlib.asynccontextmanager
    async def _write_guard(self, location: str) -> AsyncIterator[None]:
        model_dir = self._model_dir(location)
        await aiofiles.os.makedirs(model_dir, exist_ok=True)
        # Acquired in a worker thread and released on the loop thread.
        lock = FileLock(model_dir / LOCK_FILE_NAME, timeout=self.lock_timeout, thread_local=False)
        acquire = asyncio.ensure_future(asyncio.to_thread(lock.acquire))
        try:
            await asyncio.shield(acquire)
        except asyncio.CancelledError:
            # The thread may still obtain the lock after cancellation.
            await asyncio.wait([acquire])
            if acquire.exception() is None:
                lock.release()
            raise
        except Timeout as e:
            raise TransientStorageError(
                f"Timed out after {self.lock_timeout}s waiting for the model lock",
                {"location": str(model_dir)},
            ) from e
        try:
            yield
        finally:
            lock.release()

    async def _read_json(self, location: str, relative_path: str) -> Any:
        path = self._file(location, relative_path)
        try:
            async with aiofiles.open(path, encoding="utf-8") as f:
                content = await f.read()
        except FileNotFoundError as e:
            raise NotFoundError(f"{relative_path} not found", {"location": location}) from e
        except UnicodeDecodeError as e:
            raise CorruptionError(
                f"File is not valid UTF-8: {e}", {"location": location, "path": relative_path}
            ) from e
        try:
            return json.loads(content)
        except json.JSONDecodeError as e:
            raise CorruptionError(
                f"Invalid JSON: {e}", {"location": location, "path": relative_path}
            ) from e

    async def _write_json(self, location: str, relative_path: str, document: Any) -> None:
        path = self._file(location, relative_path)
        await aiofiles.os.makedirs(path.parent, exist_ok=True)
        text = json.dumps(document, indent=2, ensure_ascii=False)

        write = asyncio.ensure_future(asyncio.to_thread(_atomic_write, path, text))
        try:
            await asyncio.shield(write)
        except asyncio.CancelledError:
            # The worker thread cannot be interrupted; let it finish while the lock is held.
            await asyncio.wait([write])
            raise

    async def _delete_object(self, location: str, relative_path: str) -> None:
        with contextlib.suppress(FileNotFoundError):
            await aiofiles.os.remove(self._file(location, relative_path))

    async def _iter_relative_paths(self, location: str) -> AsyncIterator[str]:
        model_dir = self._model_dir(location)
        if not await aiofiles.os.path.isdir(model_dir):
            return
        files = await asyncio.to_thread(lambda: [p for p in model_dir.rglob("*.json") if p.is_file()])
        for file in files:
            yield file.relative_to(model_dir).as_posix()

    async def exists(self, location: str) -> bool:
        return await aiofiles.os.path.isfile(self._file(location, INDEX_FILE_NAME))

    async def list_models(self, root: str | None = None) -> list[str]:
        """Names of subdirectories of ``root`` (default: the root directory) holding an index."""
        base = Path(root) if root else self.root_directory
        if not await aiofiles.os.path.isdir(base):
            return []

        def scan() -> list[str]:
            return sorted(
                child.name
                for child in base.iterdir()
                if child.is_dir() and (child / INDEX_FILE_NAME).is_file()
            )

        return await asyncio.to_thread(scan)

    async def delete_model(self, location: str) -> bool:
        model_dir = self._model_dir(location)
        if not await aiofiles.os.path.isdir(model_dir):
            return False
        async with self._write_guard(location):
            for child in await asyncio.to_thread(lambda: list(model_dir.iterdir())):
                if child.name == LOCK_FILE_NAME:
                    continue
                if child.is_dir():
                    await asyncio.to_thread(shutil.rmtree, child)
                else:
                    await aiofiles.os.remove(child)
        # The lock file is released by now; drop it with the directory.
        await asyncio.to_thread(shutil.rmtree, model_dir, True)
        logger.info(f"Deleted model at {model_dir}")
        return True
