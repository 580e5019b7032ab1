"""Backup listing and selection under a prefix."""

from __future__ import annotations

from typing import List

from ..config import normalize_prefix
from ..errors import NotFoundError
from ..storage import ObjectInfo, ObjectStore, is_backup_key


async def list_backups(store: ObjectStore, prefix: str) -> List[ObjectInfo]:
    """Backup archives directly under prefix, newest first."""
    prefix = normalize_prefix(prefix)
    return [obj for obj in await store.list(prefix) if is_backup_key(obj.key, prefix)]


async def select_latest_backup(store: ObjectStore, prefix: str) -> ObjectInfo:
    """Return the most recent backup.

    Raises:
        NotFoundError: If the prefix holds no backups
    """
    backups = await list_backups(store, prefix)
    if not backups:
        raise NotFoundError(
            f"No backups found under s3://{store.bucket}/{normalize_prefix(prefix)}",
            prefix=normalize_prefix(prefix),
        )
    return backups[0]
