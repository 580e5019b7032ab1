"""
Retention enforcement for backup archives.

Keeps the N most recent archives under a prefix and deletes the rest.

Invariants:
    - After enforcement, archives under the prefix = min(N, before)
    - The retained set is exactly the N newest
    - keep <= 0 disables enforcement (no listing, no deletion)
    - Objects under the prefix that are not backup archives are ignored
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List

from ..config import normalize_prefix
from ..storage import ObjectStore
from .catalog import list_backups

logger = logging.getLogger(__name__)


@dataclass
class RetentionResult:
    """Outcome of one enforcement pass."""

    deleted: int = 0
    retained: int = 0
    deleted_keys: List[str] = field(default_factory=list)
    enabled: bool = True

    def to_dict(self) -> Dict[str, Any]:
        return {"deleted": self.deleted, "retained": self.retained}


async def enforce_retention(store: ObjectStore, prefix: str, keep: int) -> RetentionResult:
    """Delete all but the keep most recent archives under prefix.

    Raises:
        StorageError: If listing or deletion fails (.deleted tells what went)
    """
    if not keep or keep <= 0:
        logger.info("Retention disabled, skipping enforcement", extra={"prefix": prefix})
        return RetentionResult(enabled=False)

    prefix = normalize_prefix(prefix)
    backups = await list_backups(store, prefix)
    if len(backups) <= keep:
        return RetentionResult(deleted=0, retained=len(backups))

    to_delete = [obj.key for obj in backups[keep:]]
    await store.delete_batch(to_delete)

    logger.info(
        f"Deleted {len(to_delete)} backup(s) due to retention policy",
        extra={"deleted_keys": to_delete, "prefix": prefix, "keep": keep},
    )
    return RetentionResult(
        deleted=len(to_delete),
        retained=len(backups) - len(to_delete),
        deleted_keys=to_delete,
    )
