"""
Backup verification.

Proves a backup is restorable by restoring it into a disposable database
and counting a few well-known collections:

    select (latest or given key)
        ─▶ restore into <db>-verify
        ─▶ smoke checks (exists? count)
        ─▶ drop <db>-verify            (always)

Invariants:
    - The disposable database is dropped on every exit path
    - Missing smoke collections count as 0, not as an error
    - A cleanup failure is recorded, never raised over the main outcome
    - Verification never writes to the primary database
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, Optional, Sequence

from ..archive.reader import DEFAULT_SPOOL_MEMORY
from ..backup import restore_archive, select_latest_backup
from ..backup.restorer import DEFAULT_BATCH_SIZE
from ..config import redact_uri
from ..database import DatabaseFactory, DocumentDatabase
from ..errors import DocVaultError
from ..storage import ObjectStore

logger = logging.getLogger(__name__)

DEFAULT_SMOKE_COLLECTIONS = ("users", "orders", "products")


@dataclass
class VerificationReport:
    """Outcome of one verification run."""

    backup_key: Optional[str] = None
    bucket: Optional[str] = None
    verify_location: Optional[str] = None
    restored_collections: Dict[str, int] = field(default_factory=dict)
    smoke_checks: Dict[str, int] = field(default_factory=dict)
    verified_at: Optional[datetime] = None
    success: bool = False
    error: Optional[str] = None
    cleanup_error: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {
            "backupKey": self.backup_key,
            "bucket": self.bucket,
            "verifyLocation": self.verify_location,
            "restoredCollections": dict(self.restored_collections),
            "smokeChecks": dict(self.smoke_checks),
            "verifiedAt": self.verified_at.isoformat() if self.verified_at else None,
            "success": self.success,
        }
        if self.error:
            data["error"] = self.error
        if self.cleanup_error:
            data["cleanupError"] = self.cleanup_error
        return data


async def run_smoke_checks(db: DocumentDatabase, collections: Sequence[str]) -> Dict[str, int]:
    """Document count per collection; 0 where the collection is missing."""
    results: Dict[str, int] = {}
    for name in collections:
        if await db.collection_exists(name):
            results[name] = await db.count_documents(name)
        else:
            results[name] = 0
    return results


class VerificationRunner:
    """Restore a backup into a disposable database and smoke-check it."""

    def __init__(
        self,
        store: ObjectStore,
        open_database: DatabaseFactory,
        verify_uri: str,
        prefix: str,
        smoke_collections: Sequence[str] = DEFAULT_SMOKE_COLLECTIONS,
        batch_size: int = DEFAULT_BATCH_SIZE,
        spool_memory: int = DEFAULT_SPOOL_MEMORY,
    ) -> None:
        self._store = store
        self._open_database = open_database
        self._verify_uri = verify_uri
        self._spool_memory = spool_memory
        self._prefix = prefix
        self._smoke_collections = tuple(smoke_collections)
        self._batch_size = batch_size

    async def _cleanup(self, db: DocumentDatabase, report: VerificationReport) -> None:
        try:
            await db.drop_database()
        except DocVaultError as e:
            report.cleanup_error = str(e)
            logger.warning(
                "Failed to drop verification database",
                extra={"location": report.verify_location, "error": str(e)},
            )
        finally:
            await db.close()

    async def verify(self, backup_key: Optional[str] = None) -> VerificationReport:
        """Verify backup_key, or the latest backup when none is given.

        Raises:
            NotFoundError: If no key is given and the prefix holds no backups
            DocVaultError: On restore failure (.report holds the partial report)
        """
        report = VerificationReport(
            bucket=self._store.bucket,
            verify_location=redact_uri(self._verify_uri),
        )

        try:
            if backup_key is None:
                backup_key = (await select_latest_backup(self._store, self._prefix)).key
            report.backup_key = backup_key
            logger.info("Verifying backup", extra={"key": backup_key})

            db = await self._open_database(self._verify_uri)
            try:
                restored = await restore_archive(
                    self._store.download(backup_key),
                    db,
                    batch_size=self._batch_size,
                    spool_memory=self._spool_memory,
                )
                report.restored_collections = dict(restored.collections)
                report.smoke_checks = await run_smoke_checks(db, self._smoke_collections)
                report.success = restored.complete
                if not restored.complete:
                    report.error = f"{sum(restored.rejected.values())} document(s) rejected during restore"
            except DocVaultError as e:
                if e.report is not None:
                    report.restored_collections = dict(e.report.collections)
                raise
            finally:
                await self._cleanup(db, report)
        except DocVaultError as e:
            report.error = str(e)
            report.verified_at = datetime.now(timezone.utc)
            e.report = report
            raise

        report.verified_at = datetime.now(timezone.utc)
        logger.info(
            "Backup verification finished",
            extra={"key": backup_key, "success": report.success, "smoke_checks": report.smoke_checks},
        )
        return report
