"""
Base protocol and types for the object storage transport.

This module defines the ObjectStore protocol that all backends must
implement, the result types they return, and the backup key format.

Key format:
    <prefix>backup-<UTC ISO timestamp, ':' and '.' replaced by '-'>[-<tag>].zip

    e.g. backups/backup-2025-01-01T00-00-00-000Z.zip

Invariants:
    - Lexicographic key order equals chronological order within a prefix
    - upload() accepts streams of unknown length and measures as it goes
    - list() returns newest first and covers every page
    - delete_batch() reports partial success instead of swallowing it

How to change safely:
    - Protocol changes require updating S3 and in-memory implementations
    - Never change the timestamp format: retention relies on its ordering
"""

from __future__ import annotations

import re
from abc import abstractmethod
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import (
    TYPE_CHECKING,
    AsyncIterable,
    AsyncIterator,
    Iterator,
    List,
    Optional,
    Protocol,
    Sequence,
    runtime_checkable,
)

from ..config import normalize_prefix
from ..errors import ConfigurationError

if TYPE_CHECKING:
    from ..config import S3Config

MAX_DELETE_BATCH = 1000
DEFAULT_DOWNLOAD_CHUNK = 1024 * 1024

_TAG_RE = re.compile(r"^[A-Za-z0-9_-]+$")


@dataclass(frozen=True)
class ObjectInfo:
    """A stored object as returned by list().

    Attributes:
        key: Object key
        size: Size in bytes
        last_modified: Last modification time (UTC)
    """

    key: str
    size: int
    last_modified: datetime

    def to_dict(self) -> dict:
        return {
            "key": self.key,
            "size": self.size,
            "lastModified": self.last_modified.isoformat(),
        }


@dataclass(frozen=True)
class UploadResult:
    """Result of an upload.

    Attributes:
        bucket: Bucket/container the object was written to
        key: Object key
        size_bytes: Bytes uploaded, counted as they passed through
        content_hash: "sha256:<hex>" of the uploaded bytes
        etag: Provider entity tag
    """

    bucket: str
    key: str
    size_bytes: int
    content_hash: str
    etag: Optional[str] = None

    @property
    def location(self) -> dict:
        return {"bucket": self.bucket, "key": self.key}


@dataclass
class DeleteResult:
    """Outcome of a batch delete.

    Attributes:
        deleted: Keys confirmed deleted
        failed: Keys the provider refused to delete
    """

    deleted: List[str] = field(default_factory=list)
    failed: List[str] = field(default_factory=list)


def format_timestamp(moment: datetime) -> str:
    """Render a moment as a key-safe, sortable UTC timestamp."""
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=timezone.utc)
    moment = moment.astimezone(timezone.utc)
    iso = moment.strftime("%Y-%m-%dT%H:%M:%S") + f".{moment.microsecond // 1000:03d}Z"
    return iso.replace(":", "-").replace(".", "-")


def generate_backup_key(
    prefix: Optional[str] = None,
    timestamp: Optional[datetime] = None,
    extension: str = "zip",
    tag: Optional[str] = None,
) -> str:
    """Build the storage key for a new backup archive.

    Args:
        prefix: Key prefix (normalised to end with '/', default "backups/")
        timestamp: Backup time (defaults to now, UTC)
        extension: Archive extension
        tag: Optional label appended after the timestamp

    Raises:
        ConfigurationError: If the tag contains unsafe characters
    """
    stamp = format_timestamp(timestamp or datetime.now(timezone.utc))
    suffix = ""
    if tag:
        if not _TAG_RE.match(tag):
            raise ConfigurationError(
                f"Backup tag may only contain letters, digits, '-' and '_': {tag!r}",
                setting="tag",
            )
        suffix = f"-{tag}"
    return f"{normalize_prefix(prefix)}backup-{stamp}{suffix}.{extension}"


def is_backup_key(key: str, prefix: str, extension: str = "zip") -> bool:
    """Whether key names a backup archive directly under prefix."""
    prefix = normalize_prefix(prefix)
    if not key.startswith(prefix):
        return False
    name = key[len(prefix):]
    return "/" not in name and name.startswith("backup-") and name.endswith(f".{extension}")


def sort_newest_first(objects: Sequence[ObjectInfo]) -> List[ObjectInfo]:
    """Order objects by last_modified descending, ties by key descending."""
    return sorted(objects, key=lambda o: (o.last_modified, o.key), reverse=True)


def chunked(keys: Sequence[str], size: int = MAX_DELETE_BATCH) -> Iterator[List[str]]:
    """Split keys into provider-sized batches."""
    for start in range(0, len(keys), size):
        yield list(keys[start:start + size])


@runtime_checkable
class ObjectStore(Protocol):
    """Protocol for object storage backends.

    Example:
        >>> async with S3ObjectStore(s3_config) as store:
        ...     result = await store.upload(key, writer.stream())
        ...     backups = await store.list("backups/")
    """

    bucket: str

    @abstractmethod
    async def upload(
        self,
        key: str,
        chunks: AsyncIterable[bytes],
        content_type: str = "application/octet-stream",
    ) -> UploadResult:
        """Upload a stream of unknown length.

        Raises:
            StorageError: On provider failure (any partial upload is aborted)
        """
        ...

    @abstractmethod
    def download(self, key: str, chunk_size: int = DEFAULT_DOWNLOAD_CHUNK) -> AsyncIterator[bytes]:
        """Stream an object's bytes.

        Raises:
            NotFoundError: If the key does not exist
            StorageError: On provider failure
        """
        ...

    @abstractmethod
    async def list(self, prefix: str) -> List[ObjectInfo]:
        """List every object under prefix, newest first."""
        ...

    @abstractmethod
    async def delete_batch(self, keys: Sequence[str]) -> DeleteResult:
        """Delete keys in provider-sized batches.

        Raises:
            StorageError: If any key failed; .deleted lists those that went
        """
        ...

    @abstractmethod
    async def connect(self) -> None:
        """Acquire provider resources. Idempotent."""
        ...

    @abstractmethod
    async def close(self) -> None:
        """Release provider resources."""
        ...


def create_object_store(config: S3Config) -> ObjectStore:
    """Create the S3 object store for a configuration.

    Raises:
        ConfigurationError: If no bucket is configured
    """
    if not config.bucket:
        raise ConfigurationError(
            "Missing AWS_S3_BUCKET (or S3_BUCKET) configuration for backups",
            setting="AWS_S3_BUCKET",
        )
    from .s3 import S3ObjectStore

    return S3ObjectStore(config)
