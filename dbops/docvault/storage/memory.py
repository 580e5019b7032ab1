"""
In-memory object store for testing.

This module provides a simple in-memory ObjectStore for:
- Unit tests
- Integration tests
- Local dry runs without an S3 endpoint

Invariants:
    - All data is lost on process exit
    - Same ordering and batching behaviour as the S3 store
    - Failed or cancelled uploads leave no object behind

How to change safely:
    - This is test-only code, changes don't affect production
    - Keep interface compatible with ObjectStore protocol
"""

from __future__ import annotations

import hashlib
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import AsyncIterable, AsyncIterator, Dict, List, Optional, Sequence, Set

from ..errors import NotFoundError, StorageError
from .base import (
    DEFAULT_DOWNLOAD_CHUNK,
    MAX_DELETE_BATCH,
    DeleteResult,
    ObjectInfo,
    UploadResult,
    chunked,
    sort_newest_first,
)

logger = logging.getLogger(__name__)


@dataclass
class StoredObject:
    """An object held by the in-memory store."""

    data: bytes
    last_modified: datetime
    content_type: str = "application/octet-stream"


class InMemoryObjectStore:
    """In-memory implementation of ObjectStore for testing.

    Attributes:
        bucket: Simulated bucket name
        fail_delete_keys: Keys whose deletion is refused
        delete_calls: Batches passed to the simulated DeleteObjects
        aborted_uploads: Keys whose upload was abandoned mid-stream
        listed_prefixes: Prefixes passed to list()

    Example:
        >>> store = InMemoryObjectStore()
        >>> await store.upload("backups/a.zip", chunks())
        >>> [o.key for o in await store.list("backups/")]
        ['backups/a.zip']
    """

    def __init__(self, bucket: str = "test-bucket") -> None:
        self.bucket = bucket
        self.fail_delete_keys: Set[str] = set()
        self.delete_calls: List[List[str]] = []
        self.aborted_uploads: List[str] = []
        self.listed_prefixes: List[str] = []
        self.connected = False
        self._objects: Dict[str, StoredObject] = {}
        self._clock = datetime(2025, 1, 1, tzinfo=timezone.utc)

    def _tick(self) -> datetime:
        self._clock += timedelta(seconds=1)
        return self._clock

    async def upload(
        self,
        key: str,
        chunks: AsyncIterable[bytes],
        content_type: str = "application/octet-stream",
    ) -> UploadResult:
        buffer = bytearray()
        digest = hashlib.sha256()
        try:
            async for chunk in chunks:
                digest.update(chunk)
                buffer += chunk
        except BaseException:
            self.aborted_uploads.append(key)
            raise

        self._objects[key] = StoredObject(bytes(buffer), self._tick(), content_type)
        return UploadResult(
            bucket=self.bucket,
            key=key,
            size_bytes=len(buffer),
            content_hash=f"sha256:{digest.hexdigest()}",
            etag=f'"{hashlib.md5(buffer).hexdigest()}"',
        )

    async def download(self, key: str, chunk_size: int = DEFAULT_DOWNLOAD_CHUNK) -> AsyncIterator[bytes]:
        stored = self._objects.get(key)
        if stored is None:
            raise NotFoundError(f"Backup not found: {self.bucket}/{key}", key=key)
        for start in range(0, len(stored.data), chunk_size):
            yield stored.data[start:start + chunk_size]

    async def list(self, prefix: str) -> List[ObjectInfo]:
        self.listed_prefixes.append(prefix)
        return sort_newest_first(
            [
                ObjectInfo(key=key, size=len(obj.data), last_modified=obj.last_modified)
                for key, obj in self._objects.items()
                if key.startswith(prefix)
            ]
        )

    async def delete_batch(self, keys: Sequence[str]) -> DeleteResult:
        result = DeleteResult()
        for batch in chunked(keys, MAX_DELETE_BATCH):
            self.delete_calls.append(batch)
            for key in batch:
                if key in self.fail_delete_keys:
                    result.failed.append(key)
                    continue
                self._objects.pop(key, None)
                result.deleted.append(key)

        if result.failed:
            raise StorageError(
                f"Failed to delete {len(result.failed)} of {len(keys)} object(s)",
                keys=result.failed,
                deleted=result.deleted,
            )
        return result

    async def connect(self) -> None:
        self.connected = True

    async def close(self) -> None:
        self.connected = False

    # Testing helpers

    def put_object(self, key: str, data: bytes, last_modified: Optional[datetime] = None) -> None:
        """Store an object directly, bypassing upload()."""
        self._objects[key] = StoredObject(data, last_modified or self._tick())

    def get_object(self, key: str) -> bytes:
        """Return an object's bytes."""
        return self._objects[key].data

    def keys(self) -> List[str]:
        """All stored keys, sorted."""
        return sorted(self._objects)
